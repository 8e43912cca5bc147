"""
Reading and writing changelog files.

A changelog is the XML form of one ChangeSet::

    <changelog build="clearcase:myview" number="12">
      <entry>
        <date>2011-04-12T15:30:12</date>
        <user>sam</user>
        <comment>Fix it</comment>
        <items>
          <item version="/main/3">/vobs/proj/foo.c</item>
        </items>
      </entry>
    </changelog>

Entries are written in the set's order and read back in file order, so a
set's ordering survives the round trip.
"""

import datetime
import re
import xml.etree.ElementTree as ET
from twisted.python import log
from unipath import Path
from .changes import BuildRef, ChangeEntry, ChangeSet, FileElement
from .errors import SerializationError

DATE_FORMAT = '%Y-%m-%dT%H:%M:%S'

# Control characters XML 1.0 has no way to represent, even escaped. They do
# turn up in check-in comments now and then.
XML_ILLEGAL = re.compile('[\x00-\x08\x0b\x0c\x0e-\x1f]')

def xml_safe(text):
    """
    Drop the characters from ``text`` that can't go in an XML document::

        >>> xml_safe('ticket\\x0cfix')
        'ticketfix'

    """
    return XML_ILLEGAL.sub('', text or '')

def write_changelog(destination, change_set):
    """
    Write ``change_set`` to ``destination``, making directories as needed.

    Returns True if it worked; an I/O problem gets logged and returns False.
    """
    destination = Path(destination)
    root = ET.Element('changelog')
    if change_set.build is not None:
        root.set('build', xml_safe(str(change_set.build.name)))
        root.set('number', str(change_set.build.number))

    for entry in change_set:
        e = ET.SubElement(root, 'entry')
        ET.SubElement(e, 'date').text = entry.timestamp.strftime(DATE_FORMAT)
        ET.SubElement(e, 'user').text = xml_safe(entry.author)
        ET.SubElement(e, 'comment').text = xml_safe(entry.comment)
        items = ET.SubElement(e, 'items')
        for f in entry.files:
            ET.SubElement(items, 'item', version=xml_safe(f.version)).text = xml_safe(f.path)

    try:
        if not destination.parent.exists():
            destination.parent.mkdir(parents=True)
        ET.ElementTree(root).write(str(destination), encoding='utf-8', xml_declaration=True)
    except OSError as e:
        log.msg('write_changelog could not write %s: %s' % (destination, e))
        return False
    return True

def read_changelog(source):
    """
    Read a changelog file back into a ChangeSet.

    Raises SerializationError if the file isn't a changelog we can read.
    """
    try:
        root = ET.parse(str(Path(source))).getroot()
    except (ET.ParseError, OSError) as e:
        raise SerializationError('could not read changelog %s: %s' % (source, e))
    if root.tag != 'changelog':
        raise SerializationError('%s is not a changelog' % source)

    build = None
    if root.get('build') is not None:
        try:
            number = int(root.get('number', 0))
        except ValueError:
            raise SerializationError('bad build number in changelog %s: %r' % (source, root.get('number')))
        build = BuildRef(root.get('build'), number)

    entries = []
    for e in root.findall('entry'):
        try:
            timestamp = datetime.datetime.strptime(e.findtext('date', ''), DATE_FORMAT)
        except ValueError:
            raise SerializationError('bad date in changelog %s: %r' % (source, e.findtext('date')))
        files = tuple(FileElement(item.text or '', item.get('version'))
                      for item in e.findall('items/item'))
        entries.append(ChangeEntry(
            timestamp = timestamp,
            author = e.findtext('user', ''),
            files = files,
            comment = e.findtext('comment', ''),
        ))
    return ChangeSet(build, entries)
