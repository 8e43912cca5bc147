"""
Deciding when to build, and working out what changed.

This is the part with actual logic in it. The rest of the package is
plumbing between it and either cleartool or the buildmaster.

ReconciliationEngine doesn't keep any state between calls; everything it
needs (the last build's changes, the load rules, the time) gets passed in.
That makes it easy to test, and means whoever calls it is in charge of
remembering things from one build to the next.
"""

import datetime
import enum
from twisted.python import log
from .changes import ChangeEntryOrdering, ChangeSet, DECREASING, RevisionState
from .changelog import write_changelog
from .cleartool import parse_history_record
from .errors import EntryParseWarning, SerializationError
from .utils import before

# Changelogs are always newest first.
CHANGELOG_ORDER = DECREASING

class PollingResult(enum.Enum):
    BUILD_NOW = 'build_now'
    NO_CHANGES = 'no_changes'

class ReconciliationEngine(object):

    def __init__(self, fetcher, parser=parse_history_record, writer=write_changelog):
        self.fetcher = fetcher
        self.parser = parser
        self.writer = writer
        self.ordering = ChangeEntryOrdering(CHANGELOG_ORDER)

    def calc_revision_state(self, change_set):
        """
        Work out the baseline to compare against from a build's ChangeSet.

        No build, or a build with no changes, gives no baseline at all (which
        means "just build").
        """
        if change_set is None or change_set.is_empty:
            return None
        log.msg('%s calc_revision_state - latest commit in %r is %s' %
                (self.__class__.__name__, change_set.build, change_set.latest_commit_timestamp))
        return RevisionState(change_set.latest_commit_timestamp)

    def compare_baseline(self, baseline, load_rules, quiet_period, now=None):
        """
        Should we build? Returns PollingResult.BUILD_NOW or NO_CHANGES.

        Errors from the fetcher (ToolInvocationError, mostly) propagate:
        "couldn't ask" is not the same as "nothing changed".
        """
        if quiet_period < datetime.timedelta(0):
            raise ValueError("quiet_period can't be negative: %r" % quiet_period)
        name = self.__class__.__name__

        # Never built before, so there's nothing to compare against.
        if baseline is None:
            log.msg('%s compare_baseline - there is no baseline, BUILD_NOW' % name)
            return PollingResult.BUILD_NOW

        log.msg('%s compare_baseline - baseline time is %s' % (name, baseline.timestamp))
        remote = self.fetcher.latest_change_timestamp(load_rules, baseline.timestamp)
        if remote is None:
            log.msg('%s compare_baseline - nothing since the baseline, NO_CHANGES' % name)
            return PollingResult.NO_CHANGES

        log.msg('%s compare_baseline - remote revision time is %s' % (name, remote))

        # Somebody could be halfway through checking in a bunch of files, so
        # the newest change has to be at least quiet_period old before it
        # counts. Until then, pretend there's nothing new.
        if now is None:
            now = datetime.datetime.now()
        if not before(remote, now, quiet_period):
            log.msg('%s compare_baseline - still inside the quiet period, NO_CHANGES' % name)
            return PollingResult.NO_CHANGES

        if baseline.timestamp < remote:
            log.msg('%s compare_baseline - BUILD_NOW' % name)
            return PollingResult.BUILD_NOW

        log.msg('%s compare_baseline - NO_CHANGES' % name)
        return PollingResult.NO_CHANGES

    def collect_changes(self, previous, load_rules, build):
        """
        Fetch everything that's happened since ``previous`` (the last build's
        ChangeSet) and return it as a new, sorted ChangeSet for ``build``.
        """
        since = None
        if previous is not None and not previous.is_empty:
            since = previous.latest_commit_timestamp

        entries = []
        for raw in self.fetcher.list_history(load_rules, since):
            try:
                entries.append(self.parser(raw))
            except EntryParseWarning as w:
                log.msg('%s skipping history record: %s' % (self.__class__.__name__, w))

        return ChangeSet(build, entries, ordering=self.ordering)

    def checkout(self, previous, load_rules, build, destination):
        """
        Collect the changes for ``build`` and write them to the changelog at
        ``destination``. Returns True if the changelog got written.
        """
        log.msg('%s checkout - start %r' % (self.__class__.__name__, build))
        change_set = self.collect_changes(previous, load_rules, build)
        log.msg('%s checkout - %d changes since %s' %
                (self.__class__.__name__, len(change_set),
                 previous.latest_commit_timestamp if previous is not None else None))

        try:
            return bool(self.writer(destination, change_set))
        except (SerializationError, OSError) as e:
            log.msg('%s checkout - failed writing changelog %s: %s' %
                    (self.__class__.__name__, destination, e))
            return False
