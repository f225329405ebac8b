"""
Label tuning console

Line-oriented command loop over an EditSession. Every command returns the
text to print; errors from the engine are reported and the loop continues.

Usage:
    labeler --db labels.sqlite threats/*.yaml
    labeler --config labeler.yaml
"""
import argparse
import logging
import shlex
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from labeler.core.clusters import load_clusters
from labeler.core.config import LabelerSettings
from labeler.core.errors import ConfigError, LabelerError, UnknownLabel
from labeler.core.matcher import LabelMatcher
from labeler.core.session import EditSession, Scope
from labeler.db.label_repository import LabelRepository
from labeler.db.utils import check_db_health

try:
    import readline
except ImportError:  # not available on every platform
    readline = None

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

HELP_TEXT = """Commands:
  /load <path>... [force]           stage labels from threat description documents
  /export <path> [#id ...] [-- description]
                                    write saved labels to a YAML document
  /label #id                        enter label scope
  /x                                exit label scope
  /remove label [#id]               remove a label (current one in label scope)
  /add keyword <token,token,...>    add a keyword (comma-delimited, not trimmed)
  /remove keyword <n>               remove keyword number n
  /add signature <regex>            add a signature
  /remove signature <n>             remove signature number n
  /enable token <text>              enable a token (label scope: this label only)
  /disable token <text>             disable a token (label scope: this label only)
  /show [#id]                       show a label, or list all labels
  /match <cluster-file> [#id]       match clusters against the saved labels
  /collect <cluster-file>           add benign/suspicious cluster tokens to the dictionary
  /status                           scope, pending changes and database state
  /save                             apply pending changes
  /discard                          drop pending changes
  /help                             this text
  /quit                             leave (pending changes are lost)"""

# Commands whose name is two words ("/add keyword")
COMPOUND_COMMANDS = {'add', 'remove', 'enable', 'disable'}


class UsageError(LabelerError):
    """Malformed console command."""
    pass


def parse_label_id(text: str) -> int:
    """Accept "#3" or "3"."""
    text = text.strip()
    try:
        return int(text[1:] if text.startswith('#') else text)
    except ValueError:
        raise UsageError(f"not a label id: {text!r} (expected #id)")


def split_args(text: str) -> List[str]:
    try:
        return shlex.split(text)
    except ValueError as e:
        raise UsageError(f"cannot parse arguments {text!r}: {e}")


def parse_display_index(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        raise UsageError(f"not a number: {text!r}")


class LabelConsole:
    """
    Command dispatcher for one analyst.

    Usage:
        console = LabelConsole(repository)
        print(console.execute("/label #3"))
        print(console.execute("/add keyword scripts,setup.php,ZmEu"))
        print(console.execute("/save"))
    """

    def __init__(
        self,
        repository: LabelRepository,
        session: Optional[EditSession] = None,
        settings: Optional[LabelerSettings] = None
    ):
        self.repository = repository
        self.session = session or EditSession(repository)
        self.settings = settings or repository.settings
        self.finished = False
        self._quit_warned = False

        self._commands: Dict[str, Callable[[str], str]] = {
            'load': self.cmd_load,
            'export': self.cmd_export,
            'label': self.cmd_label,
            'x': self.cmd_exit_scope,
            'remove label': self.cmd_remove_label,
            'add keyword': self.cmd_add_keyword,
            'remove keyword': self.cmd_remove_keyword,
            'add signature': self.cmd_add_signature,
            'remove signature': self.cmd_remove_signature,
            'enable token': self.cmd_enable_token,
            'disable token': self.cmd_disable_token,
            'show': self.cmd_show,
            'match': self.cmd_match,
            'collect': self.cmd_collect,
            'status': self.cmd_status,
            'save': self.cmd_save,
            'discard': self.cmd_discard,
            'help': self.cmd_help,
            'quit': self.cmd_quit,
        }

    @property
    def prompt(self) -> str:
        scope = "" if self.session.scope == Scope.GLOBAL else f"[#{self.session.current_label_id}]"
        dirty = "*" if self.session.is_dirty else ""
        return f"labeler{scope}{dirty}> "

    def split_command(self, line: str):
        """
        Split a line into (command, argument).

        Only the single space after the command name is consumed; the
        argument keeps its spaces so keywords and tokens can contain them.
        """
        line = line.lstrip().rstrip('\r\n')
        if not line.startswith('/'):
            raise UsageError(f"commands start with '/': {line!r} (try /help)")

        name, _, rest = line[1:].partition(' ')
        if name in COMPOUND_COMMANDS:
            sub, _, rest = rest.partition(' ')
            name = f"{name} {sub}"
        return name, rest

    def execute(self, line: str) -> str:
        if not line.strip():
            return ""
        try:
            name, rest = self.split_command(line)
            handler = self._commands.get(name)
            if handler is None:
                raise UsageError(f"unknown command /{name} (try /help)")
            if name != 'quit':
                self._quit_warned = False
            return handler(rest)
        except LabelerError as e:
            logger.warning(f"{line.strip()}: {e}")
            return f"Error: {e}"

    # Loading and export

    def cmd_load(self, rest: str) -> str:
        args = split_args(rest)
        force = None
        if args and args[-1] == 'force':
            args.pop()
            force = True
        if not args:
            raise UsageError("usage: /load <path>... [force]")

        labels = self.session.stage_load(args, force_overwrite=force)
        lines = [f"{len(labels)} label(s) staged (run /save to apply):"]
        lines.extend(f"\t#{label.label_id} {label.name}" for label in labels)
        return "\n".join(lines)

    def cmd_export(self, rest: str) -> str:
        rest, _, description = rest.partition(' -- ')
        args = split_args(rest)
        if not args:
            raise UsageError("usage: /export <path> [#id ...] [-- description]")

        path, refs = args[0], args[1:]
        label_ids = [parse_label_id(ref) for ref in refs] or None
        output = self.repository.export_to_file(path, label_ids, description.strip() or None)

        message = f"exported to {output}"
        if self.session.is_dirty:
            message += " (pending changes are not exported, run /save first)"
        return message

    # Scope

    def cmd_label(self, rest: str) -> str:
        if not rest.strip():
            raise UsageError("usage: /label #id")
        label = self.session.enter_label(parse_label_id(rest))
        return label.describe()

    def cmd_exit_scope(self, rest: str) -> str:
        self.session.exit_label()
        return "global scope"

    # Staging

    def cmd_remove_label(self, rest: str) -> str:
        label_id = parse_label_id(rest) if rest.strip() else None
        removed = self.session.stage_remove_label(label_id)
        return f"label #{removed} removal staged (run /save to apply)"

    def cmd_add_keyword(self, rest: str) -> str:
        keyword = self.session.stage_add_keyword(rest)
        return f"keyword {list(keyword.tokens)} staged"

    def cmd_remove_keyword(self, rest: str) -> str:
        keyword = self.session.stage_remove_keyword(parse_display_index(rest))
        return f"keyword {keyword} removal staged"

    def cmd_add_signature(self, rest: str) -> str:
        signature = self.session.stage_add_signature(rest)
        return f"signature {signature} staged"

    def cmd_remove_signature(self, rest: str) -> str:
        signature = self.session.stage_remove_signature(parse_display_index(rest))
        return f"signature {signature} removal staged"

    def cmd_enable_token(self, rest: str) -> str:
        self.session.stage_enable_token(rest)
        return f"token {rest!r} enabled ({self._token_scope()})"

    def cmd_disable_token(self, rest: str) -> str:
        self.session.stage_disable_token(rest)
        return f"token {rest!r} disabled ({self._token_scope()})"

    def _token_scope(self) -> str:
        if self.session.scope == Scope.GLOBAL:
            return "all labels"
        return f"label #{self.session.current_label_id}"

    # Inspection

    def cmd_show(self, rest: str) -> str:
        if rest.strip():
            return self.session.view_label(parse_label_id(rest)).describe()
        if self.session.scope == Scope.LABEL:
            return self.session.current_label().describe()

        labels = self.session.view_labels()
        if not labels:
            return "no labels"
        return "\n".join(
            f"#{label.label_id} {label.name} "
            f"({len(label.keywords)} keywords, {len(label.signatures)} signatures)"
            for label in labels
        )

    def cmd_match(self, rest: str) -> str:
        args = split_args(rest)
        if not args:
            raise UsageError("usage: /match <cluster-file> [#id]")

        snapshot = self.repository.snapshot()
        label_id = parse_label_id(args[1]) if len(args) > 1 else None
        if label_id is not None and label_id not in {label.label_id for label in snapshot.labels}:
            raise UnknownLabel(f"#{label_id}")

        clusters = load_clusters(args[0])
        matcher = LabelMatcher(
            snapshot,
            max_text_length=self.settings.max_match_text_length,
            workers=self.settings.match_workers,
        )
        report = matcher.match_clusters(clusters)

        lines: List[str] = []
        if label_id is not None:
            found = report.find_clusters(label_id)
            lines.append(f"#{label_id}: {len(found)} cluster(s) {found}")
        else:
            names = {label.label_id: label.name for label in matcher.snapshot.labels}
            for cluster in clusters:
                label_ids = sorted(report.labels_for(cluster.cluster_id))
                if label_ids:
                    labels = ", ".join(f"#{i} {names[i]}" for i in label_ids)
                    lines.append(f"cluster {cluster.cluster_id} [{cluster.qualifier.value}]: {labels}")

        total, labeled, labels_used = report.statistics()
        lines.append(f"{labeled}/{total} clusters labeled, {labels_used} label(s) used")
        if self.session.is_dirty:
            lines.append("(matched against saved labels; pending changes are not applied)")
        return "\n".join(lines)

    def cmd_collect(self, rest: str) -> str:
        args = split_args(rest)
        if len(args) != 1:
            raise UsageError("usage: /collect <cluster-file>")
        added = self.session.stage_collect_tokens(load_clusters(args[0]))
        return f"{added} new token(s) staged"

    def cmd_status(self, rest: str) -> str:
        health = check_db_health(self.repository.db_path)
        scope = self._token_scope() if self.session.scope == Scope.LABEL else "global"
        lines = [
            f"scope: {scope}",
            f"database: {health['db_path']} ({health['status']})",
        ]
        if health['status'] == 'healthy':
            lines.append(
                f"saved: {health['labels']} labels, {health['tokens']} tokens "
                f"({health['disabled_tokens']} disabled), last save {health['last_save'] or 'never'}"
            )
        else:
            lines.append(f"error: {health['error']}")
        lines.append("pending:")
        lines.append(self.session.describe_pending())
        return "\n".join(lines)

    # Transaction

    def cmd_save(self, rest: str) -> str:
        if not self.session.is_dirty:
            return "nothing to save"
        result = self.session.commit()
        return (
            f"saved {result.mutations} change(s): {result.labels_written} label(s) written, "
            f"{result.labels_removed} removed, {result.tokens_written} token(s) written"
        )

    def cmd_discard(self, rest: str) -> str:
        count = len(self.session.pending())
        self.session.discard()
        return f"{count} pending change(s) discarded"

    def cmd_help(self, rest: str) -> str:
        return HELP_TEXT

    def cmd_quit(self, rest: str) -> str:
        if self.session.is_dirty and not self._quit_warned:
            self._quit_warned = True
            return (
                f"{len(self.session.pending())} unsaved change(s); "
                f"run /save, or /quit again to discard them"
            )
        if self.session.is_dirty:
            self.session.discard()
        self.finished = True
        return "bye"

    # Loop

    def run(self):
        history = self.settings.history_file
        if readline is not None and history:
            try:
                readline.read_history_file(history)
            except OSError:
                logger.debug(f"No history file yet: {history}")

        try:
            while not self.finished:
                try:
                    line = input(self.prompt)
                except EOFError:
                    print()
                    line = "/quit"
                except KeyboardInterrupt:
                    print()
                    continue
                output = self.execute(line)
                if output:
                    print(output)
        finally:
            if readline is not None and history:
                try:
                    readline.write_history_file(history)
                except OSError as e:
                    logger.warning(f"Could not write history file {history}: {e}")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Interactive label tuning console')
    parser.add_argument('documents', nargs='*', help='Threat description documents to stage at start')
    parser.add_argument('--config', help='YAML settings file (overrides LABELER_* environment)')
    parser.add_argument('--db', help='Label database path')
    parser.add_argument('--force', action='store_true', help='Overwrite stored labels with the same name')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')

    args = parser.parse_args()

    try:
        settings = LabelerSettings.from_yaml(args.config) if args.config else LabelerSettings.from_env()
    except ConfigError as e:
        parser.error(str(e))

    if args.db:
        settings = replace(settings, db_path=args.db)
    if args.force:
        settings = replace(settings, force_overwrite=True)
    if args.log_level:
        settings = replace(settings, log_level=args.log_level)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT
    )

    repository = LabelRepository(settings)
    console = LabelConsole(repository)

    if args.documents:
        print(console.execute("/load " + " ".join(shlex.quote(path) for path in args.documents)))

    console.run()


if __name__ == '__main__':
    main()
