"""
terrainscope GUI: PySide6 spectrogram terrain viewer.

Usage:
    python terrainscope-gui.py [FILE_OR_URL]
    uv run python terrainscope-gui.py

Requires: PySide6 and sounddevice (install via `uv pip install PySide6 sounddevice`)
"""

from terrainscopegui import main

if __name__ == "__main__":
    main()
