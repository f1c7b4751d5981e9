"""Command-line entry points: troupe-playbook and troupe-inventory."""
