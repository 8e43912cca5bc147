"""
How changes get from ClearCase into the buildbot.

ClearCase has no repository-wide revision numbers, so we can't just remember
"the last revision we saw" the way SVNPoller does. Instead each poll's changes
get written out as a changelog file in the master's basedir, and the newest
check-in time in that file is where the next poll picks up from.

A poll goes:

    * Read the last changelog (if any) and work out the baseline from it.

    * Ask the engine whether there's anything new that's had time to settle.

    * If so, write the new changes to a pending changelog, and if it's got
      anything in it, make that the new changelog and tell the buildmaster
      about each change, oldest first.

All the cleartool work blocks, so it happens in a thread.
"""

import datetime
import re
import time
from buildbot import config
from buildbot.changes import base
from twisted.internet import defer, threads
from twisted.python import log
from unipath import Path
from .changelog import read_changelog
from .changes import BuildRef
from .cleartool import ClearTool
from .config import ClearCaseConfig, load_settings, split_load_rules, validate_config
from .engine import PollingResult, ReconciliationEngine
from .errors import SerializationError
from .utils import NUMERIC_DATE_FORMAT

def get_change_source(viewname, load_rules, settings=None, **kwargs):
    """
    Make a ClearCasePoller for ``viewname``, using the site settings for
    anything not given explicitly.
    """
    if settings is None:
        settings = load_settings()
    kwargs.setdefault('quietPeriod', settings.quiet_period.total_seconds())
    kwargs.setdefault('cleartool', settings.cleartool)
    kwargs.setdefault('pollInterval', settings.poll_interval)
    kwargs.setdefault('encoding', settings.encoding)
    return ClearCasePoller(viewname, load_rules, **kwargs)

def _rules_text(load_rules):
    # Load rules come in as the multi-line string a user would type, but a
    # list is friendlier in a master.cfg.
    if isinstance(load_rules, str):
        return load_rules
    return '\n'.join(load_rules)

def poll_view(engine, load_rules, quiet_period, changelog, name, now=None):
    """
    Do one poll's worth of blocking work. Returns the ChangeEntries to submit,
    oldest first.
    """
    changelog = Path(changelog)
    previous = None
    if changelog.exists():
        previous = read_changelog(changelog)

    baseline = engine.calc_revision_state(previous)
    if engine.compare_baseline(baseline, load_rules, quiet_period, now) is PollingResult.NO_CHANGES:
        return []

    number = 1
    if previous is not None and previous.build is not None:
        number = previous.build.number + 1
    build = BuildRef(name, number)

    pending = Path(str(changelog) + '.new')
    if not engine.checkout(previous, load_rules, build, pending):
        raise SerializationError('could not write changelog %s' % pending)

    try:
        change_set = read_changelog(pending)
    except SerializationError:
        pending.remove()
        raise
    if change_set.is_empty:
        # Don't let an empty set replace the last one; it'd lose our place.
        pending.remove()
        return []

    pending.rename(changelog)
    return list(reversed(change_set.entries))

def change_kwargs(entry, repository, branch=None, category=None, project=''):
    """
    The keyword arguments for addChange() that describe ``entry``.
    """
    return dict(
        author = entry.author,
        revision = entry.timestamp.strftime(NUMERIC_DATE_FORMAT),
        files = [f.path for f in entry.files],
        comments = entry.comment,
        when_timestamp = time.mktime(entry.timestamp.timetuple()),
        branch = branch,
        category = category,
        project = project,
        repository = repository,
        src = 'clearcase',
    )

class ClearCasePoller(base.ReconfigurablePollingChangeSource):
    """
    Polls a ClearCase view for check-ins under some load rules.
    """

    def __init__(self, viewname, load_rules, **kwargs):
        kwargs.setdefault('name', 'clearcase:%s' % viewname)
        super().__init__(viewname, load_rules, **kwargs)

    def checkConfig(self, viewname, load_rules, quietPeriod=5 * 60, workdir=None,
                    cleartool='cleartool', encoding='utf-8', view_root=None, branch=None,
                    category=None, project='', pollInterval=5 * 60,
                    pollAtLaunch=False, name=None):
        result = validate_config(ClearCaseConfig(_rules_text(load_rules), viewname))
        for error in result.errors:
            config.error('ClearCasePoller: %s: %s' % (error.field, error.message))
        if quietPeriod < 0:
            config.error('ClearCasePoller: quietPeriod must not be negative')
        super().checkConfig(name=name, pollInterval=pollInterval, pollAtLaunch=pollAtLaunch)

    @defer.inlineCallbacks
    def reconfigService(self, viewname, load_rules, quietPeriod=5 * 60, workdir=None,
                        cleartool='cleartool', encoding='utf-8', view_root=None, branch=None,
                        category=None, project='', pollInterval=5 * 60,
                        pollAtLaunch=False, name=None):
        self.viewname = viewname
        self.load_rules = split_load_rules(_rules_text(load_rules))
        self.quiet_period = datetime.timedelta(seconds=quietPeriod)
        self.branch = branch
        self.category = category
        self.project = project

        if workdir is None:
            workdir = 'clearcase-%s' % re.sub(r'[^\w.-]', '_', viewname)
        self.workdir = workdir

        self.engine = ReconciliationEngine(
            ClearTool(viewname, workspace=view_root, executable=cleartool,
                      encoding=encoding))
        yield super().reconfigService(name=name, pollInterval=pollInterval,
                                      pollAtLaunch=pollAtLaunch)

    def describe(self):
        return 'ClearCasePoller watching view %s, load rules: %s' % (
            self.viewname, ', '.join(self.load_rules))

    def changelog_path(self):
        # The workdir is relative to the master's basedir unless it's absolute.
        workdir = Path(self.workdir)
        if not workdir.isabsolute():
            workdir = Path(self.master.basedir, self.workdir)
        return workdir.child('changelog.xml')

    @defer.inlineCallbacks
    def poll(self):
        changelog = self.changelog_path()
        entries = yield threads.deferToThread(
            poll_view, self.engine, self.load_rules, self.quiet_period,
            changelog, self.name)

        if entries:
            log.msg('%s %s: submitting %d changes' %
                    (self.__class__.__name__, self.viewname, len(entries)))
        for entry in entries:
            yield self.master.data.updates.addChange(**change_kwargs(
                entry, self.viewname, branch=self.branch,
                category=self.category, project=self.project))
