"""
Talking to ClearCase through cleartool.

Everything the rest of the package needs from ClearCase goes through a
HistoryFetcher: the newest change time, the raw history since some point, and
whether a view exists. ClearTool is the real one; tests use fakes.

cleartool's output is plain text, so we ask lshistory for a custom format with
markers that aren't going to turn up in a check-in comment::

    20110412.153012@sep@checkin@sep@sam@sep@/vobs/proj/foo.c@sep@/main/3@sep@Fix it@eol@

(date, event, user, element, version, comment.)
"""

import subprocess
from twisted.python import log
from unipath import Path
from .changes import ChangeEntry, FileElement
from .errors import EntryParseWarning, ToolInvocationError
from .utils import format_since, parse_numeric_date

SEP = '@sep@'
EOL = '@eol@'

HISTORY_FORMAT = SEP.join(['%Nd', '%o', '%u', '%En', '%Vn', '%Nc']) + EOL + r'\n'

# Only check-ins count as changes. lshistory also reports things like branch
# and label creation, which aren't interesting here.
CHECKIN = 'checkin'

class HistoryFetcher(object):
    """
    What the reconciliation engine needs from the VCS.

    ``since`` is exclusive: only changes strictly after it are reported. None
    means "since the beginning of time".
    """

    def latest_change_timestamp(self, load_rules, since):
        raise NotImplementedError

    def list_history(self, load_rules, since):
        raise NotImplementedError

    def view_exists(self, viewname):
        raise NotImplementedError

def split_record(raw):
    fields = raw.strip().split(SEP, 5)
    if len(fields) != 6:
        raise EntryParseWarning(raw, 'expected 6 fields, got %d' % len(fields))
    return fields

def parse_history_record(raw):
    """
    Turn one lshistory record into a ChangeEntry.

    Raises EntryParseWarning if the record's junk.
    """
    date, _, user, element, version, comment = split_record(raw)
    try:
        timestamp = parse_numeric_date(date)
    except ValueError:
        raise EntryParseWarning(raw, 'bad date %r' % date)
    if not element:
        raise EntryParseWarning(raw, 'no element name')
    return ChangeEntry(
        timestamp = timestamp,
        author = user,
        files = (FileElement(element, version),),
        comment = comment.strip(),
    )

class ClearTool(HistoryFetcher):
    """
    A HistoryFetcher that shells out to cleartool.

    Commands run from the root of the view: the workspace directory for a
    snapshot view, or ``/view/<viewname>`` for a dynamic one. Load rules are
    paths relative to that root.
    """

    def __init__(self, viewname, workspace=None, executable='cleartool', encoding='utf-8'):
        self.viewname = viewname
        self.executable = executable
        self.encoding = encoding
        if workspace is None:
            self.view_root = Path('/view', viewname)
        else:
            self.view_root = Path(workspace)

    def run(self, args, cwd=None):
        command = [self.executable] + list(args)
        try:
            # Check-in comments come in whatever encoding the user typed them in;
            # a bad byte shouldn't take the whole batch down with it.
            proc = subprocess.run(command, cwd=cwd, capture_output=True,
                                  encoding=self.encoding, errors='replace')
        except OSError as e:
            raise ToolInvocationError(command, output=str(e))
        if proc.returncode != 0:
            raise ToolInvocationError(command, proc.returncode, proc.stderr)
        return proc.stdout

    def lshistory(self, load_rules, since):
        """
        Get the raw check-in records under each load rule, strictly after
        ``since``.

        Overlapping load rules (say vobs/a and vobs/a/sub) report the same
        check-in more than once; each record only comes back the first time.
        """
        records = []
        seen = set()
        for rule in load_rules:
            args = ['lshistory', '-recurse', '-nco', '-fmt', HISTORY_FORMAT]
            if since is not None:
                args.extend(['-since', format_since(since)])
            args.append(rule)

            output = self.run(args, cwd=self.view_root)
            for raw in output.split(EOL):
                raw = raw.strip()
                if not raw:
                    continue
                fields = raw.split(SEP, 5)
                if len(fields) > 1 and fields[1] != CHECKIN:
                    continue

                # -since only goes down to the second and includes it, so
                # anything at exactly ``since`` is a change we've already seen.
                if since is not None and self._at_or_before(fields[0], since):
                    continue
                if raw in seen:
                    continue
                seen.add(raw)
                records.append(raw)
        return records

    def _at_or_before(self, date, since):
        try:
            return parse_numeric_date(date) <= since
        except ValueError:
            # Let the parser complain about it.
            return False

    def list_history(self, load_rules, since):
        records = self.lshistory(load_rules, since)
        log.msg('%s %s found %d history records since %s' %
                (self.__class__.__name__, self.viewname, len(records), since))
        return records

    def latest_change_timestamp(self, load_rules, since):
        latest = None
        for raw in self.lshistory(load_rules, since):
            try:
                timestamp = parse_numeric_date(split_record(raw)[0])
            except (EntryParseWarning, ValueError):
                log.msg('%s %s ignoring unreadable history record %r' %
                        (self.__class__.__name__, self.viewname, raw))
                continue
            if latest is None or timestamp > latest:
                latest = timestamp
        return latest

    def view_exists(self, viewname):
        try:
            self.run(['lsview', '-short', viewname])
        except ToolInvocationError as e:
            # lsview exits non-zero for an unknown view; not being able to
            # launch cleartool at all is a real error though.
            if e.returncode is None:
                raise
            return False
        return True
