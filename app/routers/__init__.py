from app.routers import calendar, schedules

__all__ = [
    'calendar',
    'schedules',
]
