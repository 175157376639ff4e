from .mainwindow import TerrainScopeWindow, main

__all__ = ["TerrainScopeWindow", "main"]
