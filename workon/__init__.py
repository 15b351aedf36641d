"""
workon
------

Declarative per-project workspaces: bring a project's windows and processes
up on their tags, tear them down as one unit, and reattach after the window
manager restarts.
"""
