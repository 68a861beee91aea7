from pathlib import Path

from fastapi.templating import Jinja2Templates


def _money(value) -> str:
    return f"${int(round(value or 0)):,}"


templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.filters["money"] = _money
