"""
A couple random utility functions, mostly about ClearCase's idea of dates.
"""

import datetime

# What lshistory's %Nd gives back, e.g. 20110412.153012
NUMERIC_DATE_FORMAT = '%Y%m%d.%H%M%S'

# What lshistory -since wants, e.g. 12-Apr-2011.15:30:12
SINCE_DATE_FORMAT = '%d-%b-%Y.%H:%M:%S'

def parse_numeric_date(value):
    """
    Parse a ClearCase numeric date (the ``%Nd`` format) into a datetime.

    ClearCase doesn't tell us the timezone; these are local times, so the
    result is naive. Examples::

        >>> parse_numeric_date('20110412.153012')
        datetime.datetime(2011, 4, 12, 15, 30, 12)

        >>> parse_numeric_date(' 20110412.153012\\n')
        datetime.datetime(2011, 4, 12, 15, 30, 12)

    """
    return datetime.datetime.strptime(value.strip(), NUMERIC_DATE_FORMAT)

def format_since(timestamp):
    """
    Format a datetime the way ``cleartool lshistory -since`` likes it::

        >>> format_since(datetime.datetime(2011, 4, 2, 9, 5, 0))
        '02-Apr-2011.09:05:00'

    """
    return timestamp.strftime(SINCE_DATE_FORMAT)

def before(timestamp, now, quiet_period):
    """
    Is ``timestamp + quiet_period`` strictly before ``now``?

    This is the quiet period check: a change only counts once it's had
    ``quiet_period`` to settle. Examples::

        >>> t = datetime.datetime(2011, 4, 12, 15, 0, 0)
        >>> five = datetime.timedelta(minutes=5)
        >>> before(t, t + datetime.timedelta(minutes=10), five)
        True
        >>> before(t, t + datetime.timedelta(minutes=1), five)
        False
        >>> before(t, t + five, five)
        False

    """
    return timestamp + quiet_period < now
