#!/usr/bin/env python
"""Management entrypoint for the concerto example project.

Run from a checkout with the package installed (``pip install -e .``)::

    python examples/manage.py migrate
    python examples/manage.py runserver

Point ``stripe listen --forward-to localhost:8000/api/registration/webhooks/stripe/``
at the dev server to receive Checkout webhooks locally.
"""

import os
import sys


def main() -> None:
    """Run administrative tasks against the example settings."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "settings")
    from django.core.management import execute_from_command_line

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
