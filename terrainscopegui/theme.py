"""Dark theme: named colors, view colors and the application stylesheet."""

from __future__ import annotations

from PySide6.QtGui import QColor, QPalette
from PySide6.QtWidgets import QApplication

COLORS = {
    "error": "#ff4444",
    "information": "#4499ff",
    "dim": "#888888",
    "text": "#dddddd",
    "disabled": "#666666",
    "bg": "#1e1e1e",
    "bg_alt": "#252525",
    "panel": "#2d2d2d",
    "accent": "#3a3a3a",
    "border": "#555555",
    "highlight": "#2a6db5",
}

# 3D view
VIEW_BACKGROUND = QColor("#161616")
CAGE_AXIS_COLOR = QColor("#bbbbbb")
CAGE_TICK_COLOR = QColor(136, 136, 136, 110)
CAGE_LABEL_COLOR = QColor("#999999")
SCAN_LINE_COLOR = QColor("#ffffff")
SCAN_CURTAIN_COLOR = QColor(255, 255, 255, 60)

STYLESHEET = """
    QMainWindow {{ background-color: {bg}; }}
    QMenuBar {{ background-color: {bg_alt}; color: {text}; }}
    QMenuBar::item:selected {{ background-color: {accent}; }}
    QMenu {{ background-color: {panel}; color: {text}; border: 1px solid {border}; }}
    QMenu::item:selected {{ background-color: {highlight}; }}
    QToolBar {{ background-color: {panel}; border-bottom: 1px solid {border}; spacing: 6px; padding: 2px; }}
    QToolBar QToolButton {{ color: {text}; padding: 4px 8px; }}
    QToolBar QToolButton:hover {{ background-color: {accent}; }}
    QToolBar QToolButton:disabled {{ color: {disabled}; }}
    QStatusBar {{ background-color: {bg}; color: {dim}; border-top: 1px solid #444; }}
    QStatusBar::item {{ border: none; }}
""".format(**COLORS)

_PALETTE_ROLES = {
    QPalette.Window: "bg",
    QPalette.WindowText: "text",
    QPalette.Base: "bg_alt",
    QPalette.AlternateBase: "accent",
    QPalette.ToolTipBase: "bg_alt",
    QPalette.ToolTipText: "text",
    QPalette.Text: "text",
    QPalette.Button: "accent",
    QPalette.ButtonText: "text",
    QPalette.Link: "information",
    QPalette.Highlight: "highlight",
}


def apply_dark_theme(window) -> None:
    """Install the dark palette on the application and the stylesheet on *window*."""
    palette = QPalette()
    for role, name in _PALETTE_ROLES.items():
        palette.setColor(role, QColor(COLORS[name]))
    palette.setColor(QPalette.BrightText, QColor("#ffffff"))
    palette.setColor(QPalette.HighlightedText, QColor("#ffffff"))
    for role in (QPalette.Text, QPalette.ButtonText):
        palette.setColor(QPalette.Disabled, role, QColor(COLORS["disabled"]))

    QApplication.instance().setPalette(palette)
    window.setStyleSheet(STYLESHEET)
