"""
mYouTrackWorkLogImporter
Standalone entry script kept at the project root for PyInstaller builds:

    pyinstaller --onefile --name mYouTrackWorkLogImporter --hidden-import dateutil.parser mYouTrackWorkLogImporter.py
"""

from youtrack_worklog_importer.core import *  # noqa: F401,F403
from youtrack_worklog_importer.core import main

if __name__ == "__main__":
    main()
