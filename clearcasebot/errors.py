"""
Things that can go wrong talking to ClearCase.
"""

class ClearCaseError(Exception):
    pass

class ConfigurationError(ClearCaseError):
    """
    A bad view name or set of load rules. Only ever raised while checking
    configuration, never during a build.
    """
    def __init__(self, field, message):
        self.field = field
        self.message = message
        ClearCaseError.__init__(self, '%s: %s' % (field, message))

class ToolInvocationError(ClearCaseError):
    """
    cleartool couldn't be launched, exited non-zero, or spat out something we
    couldn't make sense of at all.
    """
    def __init__(self, command, returncode=None, output=''):
        self.command = command
        self.returncode = returncode
        self.output = output
        if returncode is None:
            msg = 'could not run %r: %s' % (' '.join(command), output)
        else:
            msg = '%r exited with status %s: %s' % (' '.join(command), returncode, output.strip())
        ClearCaseError.__init__(self, msg)

class EntryParseWarning(ClearCaseError):
    """
    A single history record we couldn't parse. The record gets skipped; the
    rest of the batch carries on.
    """
    def __init__(self, record, reason):
        self.record = record
        self.reason = reason
        ClearCaseError.__init__(self, '%s: %r' % (reason, record))

class SerializationError(ClearCaseError):
    pass
