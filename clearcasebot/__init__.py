"""
Buildbot support for ClearCase: polling a view for check-ins, and keeping a
changelog of what each build picked up.
"""

__version__ = '0.1.0'
