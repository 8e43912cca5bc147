"""
Tests for the ClearCase bits.

Nothing here needs a real cleartool; history comes from a fake fetcher, a
faked-out subprocess.run, or a little shell script standing in for cleartool.
"""

import datetime
import subprocess
import pytest
from buildbot import config as buildbot_config
from . import changelog, changesource, cleartool, config, utils
from .changes import (BuildRef, ChangeEntry, ChangeEntryOrdering, ChangeSet,
                      DECREASING, FileElement, INCREASING, RevisionState)
from .engine import PollingResult, ReconciliationEngine
from .errors import ConfigurationError, EntryParseWarning, SerializationError, ToolInvocationError

T0 = datetime.datetime(2011, 4, 12, 9, 0, 0)
T1 = datetime.datetime(2011, 4, 12, 10, 0, 0)
T2 = datetime.datetime(2011, 4, 12, 11, 0, 0)
T3 = datetime.datetime(2011, 4, 12, 12, 0, 0)
T4 = datetime.datetime(2011, 4, 12, 13, 0, 0)

MINUTE = datetime.timedelta(minutes=1)
QUIET = 5 * MINUTE
BUILD = BuildRef('clearcase:myview', 1)
RULES = ['vobs/proj']

def record(timestamp, user='sam', path='/vobs/proj/foo.c', version='/main/1',
           comment='A change', op='checkin'):
    fields = [timestamp.strftime(utils.NUMERIC_DATE_FORMAT), op, user, path, version, comment]
    return cleartool.SEP.join(fields)

def entry(timestamp, path='/vobs/proj/foo.c'):
    return ChangeEntry(timestamp, 'sam', (FileElement(path, '/main/1'),), '')

class FakeFetcher(cleartool.HistoryFetcher):
    """
    Serves up a fixed list of raw records, honoring ``since`` like cleartool.
    """

    def __init__(self, records=(), views=(), error=None):
        self.records = list(records)
        self.views = set(views)
        self.error = error
        self.calls = []

    def _after(self, since):
        if since is None:
            return list(self.records)
        kept = []
        for raw in self.records:
            try:
                if utils.parse_numeric_date(cleartool.split_record(raw)[0]) <= since:
                    continue
            except (EntryParseWarning, ValueError):
                pass
            kept.append(raw)
        return kept

    def latest_change_timestamp(self, load_rules, since):
        self.calls.append(('latest', list(load_rules), since))
        if self.error:
            raise self.error
        stamps = [cleartool.parse_history_record(r).timestamp for r in self._after(since)]
        return max(stamps) if stamps else None

    def list_history(self, load_rules, since):
        self.calls.append(('list', list(load_rules), since))
        if self.error:
            raise self.error
        return self._after(since)

    def view_exists(self, viewname):
        return viewname in self.views

class RecordingWriter(object):

    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.written = []

    def __call__(self, destination, change_set):
        if self.error:
            raise self.error
        self.written.append((destination, change_set))
        return self.result

#
# changes.py
#

def test_file_element_initial_version():
    e = FileElement('/some/path/hello.java')
    assert e.version == '0'
    assert e.path == '/some/path/hello.java'

def test_file_element_empty_version_is_initial():
    assert FileElement('/a', '').version == '0'

def test_ordering_decreasing():
    ordered = ChangeEntryOrdering(DECREASING).sort([entry(T1), entry(T3), entry(T2)])
    assert [e.timestamp for e in ordered] == [T3, T2, T1]

def test_ordering_increasing():
    ordered = ChangeEntryOrdering(INCREASING).sort([entry(T3), entry(T1), entry(T2)])
    assert [e.timestamp for e in ordered] == [T1, T2, T3]

def test_ordering_ties_keep_input_order():
    a, b, c = entry(T1, '/a'), entry(T1, '/b'), entry(T2, '/c')
    assert ChangeEntryOrdering(DECREASING).sort([a, b, c]) == [c, a, b]
    assert ChangeEntryOrdering(INCREASING).sort([b, a, c]) == [b, a, c]

def test_ordering_compare():
    dec = ChangeEntryOrdering(DECREASING)
    inc = ChangeEntryOrdering(INCREASING)
    assert dec(entry(T1), entry(T2)) == 1
    assert inc(entry(T1), entry(T2)) == -1
    assert dec.compare(entry(T1), entry(T1)) == 0

def test_ordering_rejects_bad_direction():
    with pytest.raises(ValueError):
        ChangeEntryOrdering('sideways')

def test_empty_change_set_has_no_latest():
    s = ChangeSet(BUILD, [])
    assert s.is_empty
    assert s.latest_commit_timestamp is None

def test_change_set_latest_ignores_order():
    s = ChangeSet(BUILD, [entry(T1), entry(T3), entry(T2)])
    assert s.latest_commit_timestamp == T3
    assert len(s) == 3

#
# engine.py - compare_baseline
#

def test_no_baseline_always_builds():
    fetcher = FakeFetcher([record(T1)])
    engine = ReconciliationEngine(fetcher)
    assert engine.compare_baseline(None, RULES, QUIET, now=T1) is PollingResult.BUILD_NOW
    assert fetcher.calls == []

def test_nothing_since_baseline():
    engine = ReconciliationEngine(FakeFetcher([record(T0)]))
    result = engine.compare_baseline(RevisionState(T0), RULES, QUIET, now=T0 + 60 * MINUTE)
    assert result is PollingResult.NO_CHANGES

def test_remote_not_after_baseline():
    class Stale(FakeFetcher):
        def latest_change_timestamp(self, load_rules, since):
            return T0
    engine = ReconciliationEngine(Stale())
    result = engine.compare_baseline(RevisionState(T1), RULES, QUIET, now=T4)
    assert result is PollingResult.NO_CHANGES

def test_remote_equal_to_baseline():
    class Unchanged(FakeFetcher):
        def latest_change_timestamp(self, load_rules, since):
            return since
    engine = ReconciliationEngine(Unchanged())
    result = engine.compare_baseline(RevisionState(T0), RULES, QUIET, now=T0 + 60 * MINUTE)
    assert result is PollingResult.NO_CHANGES

def test_quiet_period():
    fetcher = FakeFetcher([record(T0), record(T1)])
    engine = ReconciliationEngine(fetcher)
    baseline = RevisionState(T0)

    assert engine.compare_baseline(baseline, RULES, QUIET, now=T1 + MINUTE) is PollingResult.NO_CHANGES
    assert engine.compare_baseline(baseline, RULES, QUIET, now=T1 + QUIET) is PollingResult.NO_CHANGES
    assert engine.compare_baseline(baseline, RULES, QUIET, now=T1 + 10 * MINUTE) is PollingResult.BUILD_NOW
    assert fetcher.calls[0] == ('latest', RULES, T0)

def test_zero_quiet_period():
    engine = ReconciliationEngine(FakeFetcher([record(T1)]))
    result = engine.compare_baseline(RevisionState(T0), RULES, datetime.timedelta(0),
                                     now=T1 + datetime.timedelta(seconds=1))
    assert result is PollingResult.BUILD_NOW

def test_negative_quiet_period():
    engine = ReconciliationEngine(FakeFetcher())
    with pytest.raises(ValueError):
        engine.compare_baseline(RevisionState(T0), RULES, -MINUTE, now=T1)

def test_fetch_errors_propagate_from_compare():
    error = ToolInvocationError(['cleartool', 'lshistory'], 1, 'boom')
    engine = ReconciliationEngine(FakeFetcher(error=error))
    with pytest.raises(ToolInvocationError):
        engine.compare_baseline(RevisionState(T0), RULES, QUIET, now=T4)

def test_calc_revision_state():
    engine = ReconciliationEngine(FakeFetcher())
    assert engine.calc_revision_state(None) is None
    assert engine.calc_revision_state(ChangeSet(BUILD, [])) is None
    assert engine.calc_revision_state(ChangeSet(BUILD, [entry(T2), entry(T1)])) == RevisionState(T2)

#
# engine.py - checkout
#

def test_checkout_from_empty_previous():
    fetcher = FakeFetcher([record(T1), record(T2), record(T3)])
    writer = RecordingWriter()
    engine = ReconciliationEngine(fetcher, writer=writer)

    assert engine.checkout(ChangeSet(BUILD, []), RULES, BUILD, 'changelog.xml')
    assert fetcher.calls == [('list', RULES, None)]

    destination, change_set = writer.written[0]
    assert destination == 'changelog.xml'
    assert change_set.build == BUILD
    assert [e.timestamp for e in change_set] == [T3, T2, T1]
    assert change_set.latest_commit_timestamp == T3

def test_checkout_picks_up_after_previous():
    fetcher = FakeFetcher([record(T1), record(T2), record(T3)])
    writer = RecordingWriter()
    engine = ReconciliationEngine(fetcher, writer=writer)
    previous = ChangeSet(BUILD, [entry(T2), entry(T1)])

    assert engine.checkout(previous, RULES, BuildRef('clearcase:myview', 2), 'changelog.xml')
    assert fetcher.calls == [('list', RULES, T2)]
    assert [e.timestamp for e in writer.written[0][1]] == [T3]

def test_checkout_skips_malformed_records():
    fetcher = FakeFetcher([record(T1), 'garbage', record(T2).replace('20110412.11', 'xxxxxxxx.11')])
    engine = ReconciliationEngine(fetcher)
    change_set = engine.collect_changes(None, RULES, BUILD)
    assert [e.timestamp for e in change_set] == [T1]

def test_checkout_tool_failure_is_fatal():
    error = ToolInvocationError(['cleartool', 'lshistory'])
    engine = ReconciliationEngine(FakeFetcher(error=error), writer=RecordingWriter())
    with pytest.raises(ToolInvocationError):
        engine.checkout(None, RULES, BUILD, 'changelog.xml')

def test_checkout_writer_failure():
    fetcher = FakeFetcher([record(T1)])
    assert not ReconciliationEngine(fetcher, writer=RecordingWriter(result=False)).checkout(
        None, RULES, BUILD, 'changelog.xml')
    assert not ReconciliationEngine(fetcher, writer=RecordingWriter(error=SerializationError('x'))).checkout(
        None, RULES, BUILD, 'changelog.xml')
    assert not ReconciliationEngine(fetcher, writer=RecordingWriter(error=IOError('disk full'))).checkout(
        None, RULES, BUILD, 'changelog.xml')

def test_consecutive_checkouts_never_repeat():
    fetcher = FakeFetcher([record(T1), record(T2)])
    engine = ReconciliationEngine(fetcher)
    first = engine.collect_changes(None, RULES, BUILD)

    fetcher.records.append(record(T3))
    second = engine.collect_changes(first, RULES, BuildRef('clearcase:myview', 2))
    assert [e.timestamp for e in second] == [T3]

    third = engine.collect_changes(second, RULES, BuildRef('clearcase:myview', 3))
    assert third.is_empty

#
# config.py
#

def test_split_load_rules():
    assert config.split_load_rules('a\r\nb\n\nc') == ['a', 'b', 'c']
    assert config.split_load_rules('  vobs/a  \n vobs/b') == ['vobs/a', 'vobs/b']
    assert config.split_load_rules('') == []

def test_validate_load_rules():
    assert config.validate_load_rules('vobs/a\nvobs/b') == ['vobs/a', 'vobs/b']
    for bad in ['', '   \n ', 'a\na', 'a\n a ', 'a b']:
        with pytest.raises(ConfigurationError) as exc:
            config.validate_load_rules(bad)
        assert exc.value.field == 'load_rules'

def test_validate_viewname():
    fetcher = FakeFetcher(views=['myview'])
    assert config.validate_viewname('myview', fetcher) == 'myview'
    assert config.validate_viewname('otherview') == 'otherview'
    for bad in ['', '  ', 'my view']:
        with pytest.raises(ConfigurationError):
            config.validate_viewname(bad)
    with pytest.raises(ConfigurationError):
        config.validate_viewname('otherview', fetcher)

def test_validate_config_collects_everything():
    result = config.validate_config(config.ClearCaseConfig('a\na', 'my view'))
    assert not result.ok
    assert [e.field for e in result.errors] == ['load_rules', 'viewname']

    assert config.validate_config(config.ClearCaseConfig('vobs/a', 'myview')).ok

def test_load_settings_defaults(tmp_path):
    settings = config.load_settings(str(tmp_path / 'missing.json'))
    assert settings.quiet_period == 5 * MINUTE
    assert settings.cleartool == 'cleartool'

def test_load_settings_from_file(tmp_path):
    path = tmp_path / 'clearcase.json'
    path.write_text('{"quiet_period": 60, "cleartool": "/opt/rational/bin/cleartool"}')
    settings = config.load_settings(str(path))
    assert settings.quiet_period == MINUTE
    assert settings.cleartool == '/opt/rational/bin/cleartool'
    assert settings.poll_interval == 5 * 60

    path.write_text('{"quiet_period": -1}')
    with pytest.raises(ConfigurationError):
        config.load_settings(str(path))

#
# cleartool.py
#

def test_parse_history_record():
    e = cleartool.parse_history_record(record(T1, comment='Fixed\nthe thing '))
    assert e.timestamp == T1
    assert e.author == 'sam'
    assert e.files == (FileElement('/vobs/proj/foo.c', '/main/1'),)
    assert e.comment == 'Fixed\nthe thing'

def test_parse_history_record_rejects_junk():
    for raw in ['garbage', record(T1).replace('20110412', 'someday'), record(T1, path='')]:
        with pytest.raises(EntryParseWarning):
            cleartool.parse_history_record(raw)

class FakeRun(object):

    def __init__(self, stdout='', returncode=0, stderr='', error=None):
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.error = error
        self.calls = []

    def __call__(self, command, cwd=None, **kwargs):
        self.calls.append((command, cwd))
        if self.error:
            raise self.error
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)

def lshistory_output(*records):
    return ''.join(r + cleartool.EOL + '\n' for r in records)

def test_cleartool_list_history(monkeypatch):
    run = FakeRun(lshistory_output(
        record(T1), record(T2, op='mkbranch'), record(T2), record(T3)))
    monkeypatch.setattr(cleartool.subprocess, 'run', run)

    ct = cleartool.ClearTool('myview')
    records = ct.list_history(RULES, T1)
    assert records == [record(T2), record(T3)]

    command, cwd = run.calls[0]
    assert cwd == '/view/myview'
    assert command[:2] == ['cleartool', 'lshistory']
    assert command[command.index('-since') + 1] == '12-Apr-2011.10:00:00'
    assert command[-1] == 'vobs/proj'

def test_cleartool_everything_without_since(monkeypatch):
    run = FakeRun(lshistory_output(record(T1)))
    monkeypatch.setattr(cleartool.subprocess, 'run', run)

    ct = cleartool.ClearTool('myview', workspace='/home/build/myview', executable='/usr/atria/bin/cleartool')
    # Both rules see the same check-in; it only counts once.
    assert ct.list_history(['vobs/a', 'vobs/a/sub'], None) == [record(T1)]
    assert len(run.calls) == 2
    assert '-since' not in run.calls[0][0]
    assert run.calls[0][0][0] == '/usr/atria/bin/cleartool'
    assert run.calls[0][1] == '/home/build/myview'

def test_cleartool_non_utf8_output(tmp_path):
    # A real script, so the bytes really do go through subprocess decoding.
    script = tmp_path / 'cleartool'
    script.write_text(
        '#!/bin/sh\n'
        r"printf '20110412.100000@sep@checkin@sep@sam@sep@/vobs/a.c@sep@/main/1@sep@Caf\351@eol@\n'" '\n')
    script.chmod(0o755)

    ct = cleartool.ClearTool('myview', workspace=str(tmp_path), executable=str(script))
    [raw] = ct.list_history(RULES, None)
    assert cleartool.parse_history_record(raw).comment == 'Caf\ufffd'
    assert ct.latest_change_timestamp(RULES, None) == T1

    ct = cleartool.ClearTool('myview', workspace=str(tmp_path), executable=str(script),
                             encoding='latin-1')
    [raw] = ct.list_history(RULES, None)
    assert cleartool.parse_history_record(raw).comment == 'Caf\xe9'

def test_cleartool_latest_change(monkeypatch):
    monkeypatch.setattr(cleartool.subprocess, 'run',
                        FakeRun(lshistory_output(record(T2), record(T3), record(T1))))
    assert cleartool.ClearTool('myview').latest_change_timestamp(RULES, T0) == T3

    monkeypatch.setattr(cleartool.subprocess, 'run', FakeRun(lshistory_output(record(T1))))
    assert cleartool.ClearTool('myview').latest_change_timestamp(RULES, T1) is None

def test_cleartool_failures(monkeypatch):
    monkeypatch.setattr(cleartool.subprocess, 'run', FakeRun(returncode=1, stderr='no such vob'))
    with pytest.raises(ToolInvocationError) as exc:
        cleartool.ClearTool('myview').list_history(RULES, None)
    assert exc.value.returncode == 1

    monkeypatch.setattr(cleartool.subprocess, 'run', FakeRun(error=FileNotFoundError('cleartool')))
    with pytest.raises(ToolInvocationError) as exc:
        cleartool.ClearTool('myview').latest_change_timestamp(RULES, None)
    assert exc.value.returncode is None

def test_cleartool_view_exists(monkeypatch):
    monkeypatch.setattr(cleartool.subprocess, 'run', FakeRun('myview\n'))
    assert cleartool.ClearTool('myview').view_exists('myview')

    monkeypatch.setattr(cleartool.subprocess, 'run', FakeRun(returncode=1))
    assert not cleartool.ClearTool('myview').view_exists('nope')

    monkeypatch.setattr(cleartool.subprocess, 'run', FakeRun(error=OSError('nope')))
    with pytest.raises(ToolInvocationError):
        cleartool.ClearTool('myview').view_exists('myview')

#
# changelog.py
#

def test_changelog_round_trip(tmp_path):
    entries = [
        ChangeEntry(T3, 'sam', (FileElement('/vobs/a.c', '/main/4'), FileElement('/vobs/b.c')), 'Two files'),
        ChangeEntry(T1, 'jo', (FileElement('/vobs/c.c', '/main/2'),), ''),
    ]
    path = tmp_path / 'sub' / 'changelog.xml'
    assert changelog.write_changelog(str(path), ChangeSet(BUILD, entries))

    change_set = changelog.read_changelog(str(path))
    assert change_set.build == BUILD
    assert list(change_set) == entries
    assert change_set.latest_commit_timestamp == T3

def test_changelog_drops_control_characters(tmp_path):
    e = ChangeEntry(T1, 'sam', (FileElement('/vobs/a\x01.c', '/main/1'),), 'ticket\x0cfix\nmore')
    path = str(tmp_path / 'changelog.xml')
    assert changelog.write_changelog(path, ChangeSet(BUILD, [e]))

    [read] = changelog.read_changelog(path)
    assert read.comment == 'ticketfix\nmore'
    assert read.files == (FileElement('/vobs/a.c', '/main/1'),)
    assert read.timestamp == T1

def test_changelog_write_failure(tmp_path):
    blocker = tmp_path / 'afile'
    blocker.write_text('')
    assert not changelog.write_changelog(str(blocker / 'x' / 'changelog.xml'), ChangeSet(BUILD, [entry(T1)]))

def test_changelog_read_failure(tmp_path):
    path = tmp_path / 'changelog.xml'
    path.write_text('<changelog><entry>')
    with pytest.raises(SerializationError):
        changelog.read_changelog(str(path))

    path.write_text('<notachangelog/>')
    with pytest.raises(SerializationError):
        changelog.read_changelog(str(path))

    path.write_text('<changelog build="clearcase:myview" number="twelve"/>')
    with pytest.raises(SerializationError):
        changelog.read_changelog(str(path))

#
# changesource.py
#

def test_poll_view(tmp_path):
    fetcher = FakeFetcher([record(T1), record(T2), record(T3)])
    engine = ReconciliationEngine(fetcher)
    log_path = str(tmp_path / 'clearcase-myview' / 'changelog.xml')

    # First time round there's no baseline, so everything gets submitted.
    entries = changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T3 + MINUTE)
    assert [e.timestamp for e in entries] == [T1, T2, T3]
    stored = changelog.read_changelog(log_path)
    assert stored.build == BuildRef('clearcase:myview', 1)
    assert [e.timestamp for e in stored] == [T3, T2, T1]

    # Nothing new.
    assert changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T4) == []

    # Something new, but too new.
    fetcher.records.append(record(T4))
    assert changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T4 + MINUTE) == []

    entries = changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T4 + 10 * MINUTE)
    assert [e.timestamp for e in entries] == [T4]
    stored = changelog.read_changelog(log_path)
    assert stored.build == BuildRef('clearcase:myview', 2)
    assert stored.latest_commit_timestamp == T4
    assert not (tmp_path / 'clearcase-myview' / 'changelog.xml.new').exists()

def test_poll_view_keeps_changelog_when_nothing_parses(tmp_path):
    log_path = str(tmp_path / 'changelog.xml')
    changelog.write_changelog(log_path, ChangeSet(BUILD, [entry(T1)]))

    class Junk(FakeFetcher):
        def list_history(self, load_rules, since):
            return ['garbage']
    engine = ReconciliationEngine(Junk([record(T2)]))

    assert changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T4) == []
    assert changelog.read_changelog(log_path).latest_commit_timestamp == T1
    assert not (tmp_path / 'changelog.xml.new').exists()

def test_poll_view_moves_past_control_characters(tmp_path):
    fetcher = FakeFetcher([record(T1, comment='a\x0cb')])
    engine = ReconciliationEngine(fetcher)
    log_path = str(tmp_path / 'changelog.xml')

    entries = changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T4)
    assert [e.comment for e in entries] == ['ab']
    assert changelog.read_changelog(log_path).latest_commit_timestamp == T1
    assert not (tmp_path / 'changelog.xml.new').exists()

    fetcher.records.append(record(T2))
    entries = changesource.poll_view(engine, RULES, QUIET, log_path, 'clearcase:myview', now=T4)
    assert [e.timestamp for e in entries] == [T2]

def test_poll_view_cleans_up_unreadable_changelog(tmp_path):
    def bad_writer(destination, change_set):
        with open(destination, 'w') as f:
            f.write('<changelog><entry>')
        return True
    engine = ReconciliationEngine(FakeFetcher([record(T1)]), writer=bad_writer)

    with pytest.raises(SerializationError):
        changesource.poll_view(engine, RULES, QUIET, str(tmp_path / 'changelog.xml'), 'x', now=T4)
    assert not (tmp_path / 'changelog.xml.new').exists()

def test_poll_view_write_failure(tmp_path):
    engine = ReconciliationEngine(FakeFetcher([record(T1)]), writer=RecordingWriter(result=False))
    with pytest.raises(SerializationError):
        changesource.poll_view(engine, RULES, QUIET, str(tmp_path / 'changelog.xml'), 'x', now=T4)

def test_change_kwargs():
    e = ChangeEntry(T1, 'sam', (FileElement('/vobs/a.c', '/main/4'),), 'Fix it')
    kwargs = changesource.change_kwargs(e, 'myview', branch='main', project='proj')
    assert kwargs['author'] == 'sam'
    assert kwargs['files'] == ['/vobs/a.c']
    assert kwargs['comments'] == 'Fix it'
    assert kwargs['revision'] == '20110412.100000'
    assert kwargs['repository'] == 'myview'
    assert kwargs['branch'] == 'main'
    assert kwargs['src'] == 'clearcase'
    assert datetime.datetime.fromtimestamp(kwargs['when_timestamp']) == T1

def test_poller_checks_config():
    poller = changesource.ClearCasePoller('myview', ['vobs/a', 'vobs/b'])
    assert poller.name == 'clearcase:myview'

    with pytest.raises(buildbot_config.ConfigErrors):
        changesource.ClearCasePoller('my view', 'vobs/a')
    with pytest.raises(buildbot_config.ConfigErrors):
        changesource.ClearCasePoller('myview', 'vobs/a\nvobs/a')

def test_get_change_source():
    settings = config.Settings(quiet_period=MINUTE, cleartool='ct', poll_interval=60, encoding='latin-1')
    poller = changesource.get_change_source('myview', 'vobs/a', settings=settings)
    assert poller.name == 'clearcase:myview'
