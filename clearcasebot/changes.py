"""
The things we pass around: changes, sets of changes, and the "how far have we
got" marker that connects one build to the next.

The chain works like this. Build N's ChangeSet knows its latest commit time;
that becomes build N's RevisionState; build N+1 then asks ClearCase for
everything *strictly after* that time. Strictly after means we never see the
same change twice, and never lose one in between.
"""

import collections

# The version ClearCase gives an element before anything's been checked in.
INITIAL_VERSION = '0'

class FileElement(collections.namedtuple('FileElement', 'path version')):
    """
    One file touched by a change, and which version of it the change made.
    """
    __slots__ = ()

    def __new__(cls, path, version=INITIAL_VERSION):
        return super(FileElement, cls).__new__(cls, path, version or INITIAL_VERSION)

ChangeEntry = collections.namedtuple('ChangeEntry', 'timestamp author files comment')

BuildRef = collections.namedtuple('BuildRef', 'name number')

RevisionState = collections.namedtuple('RevisionState', 'timestamp')

INCREASING = 'increasing'
DECREASING = 'decreasing'

class ChangeEntryOrdering(object):
    """
    Orders ChangeEntries by timestamp, oldest first (INCREASING) or newest
    first (DECREASING).

    Entries with equal timestamps stay in whatever order they came in. That's
    just Python's sort being stable (reverse=True keeps it stable too), but
    it's the tie-break we rely on, so don't swap in something clever.
    """

    def __init__(self, direction=DECREASING):
        if direction not in (INCREASING, DECREASING):
            raise ValueError("Bad ordering direction: %r" % direction)
        self.direction = direction

    def compare(self, a, b):
        if a.timestamp == b.timestamp:
            return 0
        result = -1 if a.timestamp < b.timestamp else 1
        if self.direction == DECREASING:
            result = -result
        return result

    __call__ = compare

    def sort(self, entries):
        return sorted(entries, key=lambda e: e.timestamp,
                      reverse=(self.direction == DECREASING))

class ChangeSet(object):
    """
    The changes that went into one build, in changelog order.
    """

    def __init__(self, build, entries=(), ordering=None):
        self.build = build
        if ordering is not None:
            entries = ordering.sort(entries)
        self.entries = tuple(entries)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    def __repr__(self):
        return '<ChangeSet %r: %d entries>' % (self.build, len(self.entries))

    @property
    def is_empty(self):
        return not self.entries

    @property
    def latest_commit_timestamp(self):
        """
        The newest timestamp in the set, or None if the set is empty.

        None really means "we don't know", so don't go treating it as the
        epoch. Worked out with max() so it doesn't matter how the set is sorted.
        """
        if not self.entries:
            return None
        return max(e.timestamp for e in self.entries)
