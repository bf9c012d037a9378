#!/usr/bin/env python3
"""
task-sync CLI

Keeps Obsidian task lines and the Taskwarrior task store in sync.

Usage:
    ./task-sync.py [--vault DIR | --file NOTE] [--task-db DIR] [--tz ZONE] md-to-tc
    ./task-sync.py [--vault DIR | --file NOTE] [--task-db DIR] [--tz ZONE] tc-to-md

Examples:
    # Push every task in the vault to the store, adding ids to new tasks
    ./task-sync.py --vault ~/Notes md-to-tc

    # Pull store changes (completions, dates, priorities) back into one note
    ./task-sync.py --file ~/Notes/Projects.md --tz America/Chicago tc-to-md
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from task_sync import main

if __name__ == '__main__':
    sys.exit(main())
