# carpool/main.py
# uvicorn carpool.main:app --reload
from .app import create_app
from .settings import settings

app = create_app(settings)
