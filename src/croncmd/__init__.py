"""
croncmd - run commands on cron schedules in the foreground.

Packages:
- croncmd.core: errors, logging, settings and the scheduling engine
- croncmd.crontab: instruction sources (crontab files, argument pairs)
- croncmd.cli: the ``croncmd`` command
"""

__version__ = "0.1.0"
