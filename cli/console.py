# cli/console.py
from typing import Callable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nat.candidate import Role
from net.session_manager import SessionController, SessionState
from sdp.codec import format_candidate
from util.errors import IceDemoError
from util.log import log
from util.metrics import snapshot

MENU = [
    ("c", "create", "Create the instance"),
    ("d", "destroy", "Destroy the instance"),
    ("i", "init o|a", "Initialize ICE session as offerer or answerer"),
    ("e", "stop", "End/stop ICE session"),
    ("s", "show", "Display local ICE info"),
    ("r", "remote", "Input remote ICE info"),
    ("b", "start", "Begin ICE negotiation"),
    ("x", "send <compid> ..", "Send data to remote"),
    ("t", "stats", "Show counters"),
    ("h", "help", "* Help! *"),
    ("q", "quit", "Quit"),
]

HELP_TEXT = """
-= Help on using ICE and this program =-

This application demonstrates ICE without a signaling protocol. Run two
instances of it to simulate two ICE agents and copy-paste the session
description between them.

Basic ICE flow:
 create instance [menu "c"]
 repeat these steps as wanted:
   - init session as offerer or answerer [menu "i"]
   - display our SDP [menu "s"]
   - "send" our SDP from the "show" output above to remote, by
     copy-pasting the SDP to the other instance
   - parse remote SDP, by pasting SDP generated by the other
     instance [menu "r"]
   - begin ICE negotiation in our end [menu "b"], and
   - immediately begin ICE negotiation in the other instance
   - ICE negotiation will run, and result will be printed to screen
   - send application data to remote [menu "x"]
   - end/stop ICE session [menu "e"]
 destroy instance [menu "d"]

This concludes the help screen.
"""


class IceConsole:
    def __init__(self, controller: SessionController, console: Optional[Console] = None,
                 read_line: Callable[[str], str] = input,
                 fatal_error: Optional[Callable[[], Optional[BaseException]]] = None) -> None:
        self.controller = controller
        self._fatal_error = fatal_error or (lambda: None)
        self.console = console or Console()
        self._read_line = read_line
        self._commands = {
            "create": self._create, "c": self._create,
            "destroy": self._destroy, "d": self._destroy,
            "init": self._init, "i": self._init,
            "stop": self._stop, "e": self._stop,
            "show": self.show, "s": self.show,
            "remote": self._remote, "r": self._remote,
            "start": self._start, "b": self._start,
            "send": self._send, "x": self._send,
            "stats": self._stats, "t": self._stats,
            "help": self._help, "h": self._help,
        }

    # ---------------- loop ----------------
    def run(self) -> None:
        """Read commands until quit or EOF. A dead scheduler worker is re-raised here."""
        while True:
            self._check_worker()
            self.print_menu()
            try:
                line = self._read_line("Input: ")
            except EOFError:
                return
            if not self.handle(line):
                return

    def _check_worker(self) -> None:
        error = self._fatal_error()
        if error is not None:
            self.console.print(f"[red]Fatal: event worker stopped: {escape(str(error))}[/red]")
            raise error

    def handle(self, line: str) -> bool:
        """Run one command line. Returns False when the operator asked to quit."""
        parts = line.strip().split(None, 1)
        if not parts:
            return True
        cmd, rest = parts[0], (parts[1] if len(parts) > 1 else "")
        if cmd in ("quit", "q"):
            return False
        handler = self._commands.get(cmd)
        if handler is None:
            self.console.print(f"Invalid command '{cmd}'", markup=False)
            return True
        try:
            handler(rest)
        except IceDemoError as e:
            log("command_error", command=cmd, error=str(e))
            self.console.print(f"[red]Error: {escape(str(e))}[/red]")
        return True

    def print_menu(self) -> None:
        table = Table(title="M E N U", show_header=False)
        table.add_column("key", style="bold cyan")
        table.add_column("command")
        table.add_column("description")
        for key, command, description in MENU:
            table.add_row(key, command, description)
        self.console.print(table)

    # ---------------- commands ----------------
    def _create(self, _rest: str) -> None:
        self.controller.create()
        self.console.print("[green]ICE instance successfully created[/green]")

    def _destroy(self, _rest: str) -> None:
        self.controller.destroy()
        self.console.print("ICE instance destroyed")

    def _init(self, rest: str) -> None:
        if not rest:
            self.console.print("[red]error: Role required[/red]")
            return
        self.controller.init_session(Role.from_char(rest))
        self.console.print("ICE session created")

    def _stop(self, _rest: str) -> None:
        self.controller.stop_session()
        self.console.print("ICE session stopped")

    def _remote(self, _rest: str) -> None:
        self.console.print("Paste SDP from remote host, end with empty line")
        # consume the pasted block up to its blank line before the controller checks state
        info = self.controller.input_remote(self._remote_lines())
        self.console.print(f"Done, {len(info.candidates)} remote candidate(s) added")

    def _remote_lines(self) -> List[str]:
        lines = []
        while True:
            try:
                line = self._read_line(">")
            except EOFError:
                return lines
            if not line.strip():
                return lines
            lines.append(line)

    def _start(self, _rest: str) -> None:
        self.controller.start_negotiation()
        self.console.print("ICE negotiation started")

    def _send(self, rest: str) -> None:
        parts = rest.split(None, 1)
        if not parts:
            self.console.print("[red]Error: component ID required[/red]")
            return
        try:
            comp_id = int(parts[0])
        except ValueError:
            self.console.print(f"[red]Error: invalid component ID '{escape(parts[0])}'[/red]")
            return
        data = parts[1] if len(parts) > 1 else ""
        self.controller.send_data(comp_id, data.encode("utf-8"))
        self.console.print("Data sent")

    def _stats(self, _rest: str) -> None:
        table = Table(title="Counters")
        table.add_column("counter")
        table.add_column("value", justify="right")
        for name, value in snapshot().items():
            table.add_row(name, str(value))
        self.console.print(table)

    def _help(self, _rest: str) -> None:
        self.console.print(HELP_TEXT, markup=False, highlight=False)

    def show(self, _rest: str = "") -> None:
        info = self.controller.describe()
        state = info["state"]
        if state is SessionState.NO_INSTANCE:
            self.console.print("[red]Error: No ICE instance, create it first[/red]")
            return
        out = self.console
        out.print("General info")
        out.print("---------------")
        out.print(f"Component count    : {info['comp_cnt']}")
        out.print(f"Status             : {state.value}")
        if info["role"] is None:
            out.print("Create the session first to see more info")
            return
        out.print(f"Negotiated comp_cnt: {info['negotiated_comp_cnt']}")
        out.print(f"Role               : {info['role'].value}")
        if not info["gathered"]:
            out.print("Candidate gathering is still in progress")

        sdp = self.controller.encode_local()
        out.print("")
        out.print("Local SDP (paste this to remote host):")
        out.print("--------------------------------------")
        out.print(sdp, markup=False, highlight=False)

        out.print("Remote info:")
        out.print("----------------------")
        remote = info["remote"]
        if remote is None:
            out.print("No remote info yet")
            return
        out.print(f"Remote ufrag       : {remote.ufrag}", markup=False)
        out.print(f"Remote password    : {remote.password}", markup=False)
        out.print(f"Remote cand. cnt.  : {len(remote.candidates)}")
        for cand in remote.candidates:
            out.print(f"  {format_candidate(cand)}", markup=False, highlight=False)
