# Web application for body scan, guided checkup and chat
from .app import create_app, run_dashboard
from .previews import PreviewStore
from .session import CheckupSession, ScreeningSession

__all__ = ["create_app", "run_dashboard", "PreviewStore", "CheckupSession", "ScreeningSession"]
