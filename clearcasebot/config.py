"""
Configuration: which view to watch, which parts of it, and how patient to be.

There are two halves. ClearCaseConfig is what a master.cfg author types in (a
view name and some load rules), and gets checked up front by validate_config.
Settings are the site-wide knobs (quiet period, where cleartool lives), read
out of a JSON file next to the package if there is one.
"""

import collections
import datetime
import json
import re
from unipath import Path
from .errors import ConfigurationError

ClearCaseConfig = collections.namedtuple('ClearCaseConfig', 'load_rules viewname')

Settings = collections.namedtuple('Settings', 'quiet_period cleartool poll_interval encoding')

DEFAULT_SETTINGS = {
    # Seconds to wait after the newest change before we believe nobody's still
    # in the middle of checking things in.
    'quiet_period': 5 * 60,
    'cleartool': 'cleartool',
    'poll_interval': 5 * 60,
    # What cleartool's output (check-in comments, mostly) is encoded in.
    'encoding': 'utf-8',
}

FieldError = collections.namedtuple('FieldError', 'field message')

class ValidationResult(object):

    def __init__(self, errors=None):
        self.errors = list(errors or [])

    @property
    def ok(self):
        return not self.errors

    def __bool__(self):
        return self.ok

    def __repr__(self):
        return '<ValidationResult %r>' % self.errors

def load_settings(path=None):
    """
    Read settings from a JSON file. Defaults to ``clearcase.json`` in the
    directory above the package; anything missing (the whole file, even) just
    gets the default.
    """
    if path is None:
        path = Path(__file__).ancestor(2).child('clearcase.json')
    else:
        path = Path(path)

    values = dict(DEFAULT_SETTINGS)
    if path.exists():
        values.update(json.loads(path.read_file('r')))

    quiet_period = datetime.timedelta(seconds=values['quiet_period'])
    if quiet_period < datetime.timedelta(0):
        raise ConfigurationError('quiet_period', 'must not be negative')

    return Settings(
        quiet_period = quiet_period,
        cleartool = values['cleartool'],
        poll_interval = values['poll_interval'],
        encoding = values['encoding'],
    )

def split_load_rules(text):
    """
    Split the load rules box into a list of rules, one per line.

    Handles both kinds of line ending and drops blank lines::

        >>> split_load_rules('a\\r\\nb\\n\\nc')
        ['a', 'b', 'c']

    """
    rules = []
    for rule in re.split(r'[\r\n]+', text or ''):
        rule = rule.strip()
        if rule:
            rules.append(rule)
    return rules

def validate_load_rules(text):
    if text is None or not text.strip():
        raise ConfigurationError('load_rules', 'Load rules must not be empty')

    rules = split_load_rules(text)
    for rule in rules:
        if re.search(r'\s', rule):
            raise ConfigurationError('load_rules', 'Load rule %r contains whitespace' % rule)

    if len(set(rules)) < len(rules):
        raise ConfigurationError('load_rules', 'Load rules contain a duplicated rule')
    return rules

def validate_viewname(name, fetcher=None):
    """
    Check a view name. If given a HistoryFetcher, also ask it whether the
    view actually exists, which means running cleartool, so only do that at
    configuration time.
    """
    if name is None or not name.strip():
        raise ConfigurationError('viewname', 'View name must not be empty')

    if re.search(r'\s', name):
        raise ConfigurationError('viewname', 'View name must not contain whitespace')

    if fetcher is not None and not fetcher.view_exists(name):
        raise ConfigurationError('viewname', 'View %r does not exist' % name)
    return name

def validate_config(cfg, fetcher=None):
    """
    Check a whole ClearCaseConfig, collecting every problem rather than
    stopping at the first.
    """
    errors = []
    checks = [
        (validate_load_rules, (cfg.load_rules,)),
        (validate_viewname, (cfg.viewname, fetcher)),
    ]
    for check, args in checks:
        try:
            check(*args)
        except ConfigurationError as e:
            errors.append(FieldError(e.field, e.message))
    return ValidationResult(errors)
