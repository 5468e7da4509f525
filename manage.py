#!/usr/bin/env python
"""
Command line entry point for the Sanjeevani backend.

Points Django at ``sanjeevani.settings`` and hands over to the
management utility (``runserver``, ``migrate``, ``seed_queue``,
``watch_queue`` ...).
"""
import os
import sys


def main() -> None:
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'sanjeevani.settings')
    try:
        from django.core.management import execute_from_command_line  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Is it installed and is the virtual "
            "environment active?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
