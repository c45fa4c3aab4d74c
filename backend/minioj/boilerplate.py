from .errors import NotFoundError
from .models import ProblemBoilerplate


def splice(boilerplate: ProblemBoilerplate, user_code: str) -> str:
    """Return the full program with the user's code in place of the stub."""
    if not boilerplate.full_code or not boilerplate.code:
        raise NotFoundError("boilerplate for this language is incomplete")
    if boilerplate.code not in boilerplate.full_code:
        raise NotFoundError("boilerplate stub does not occur in the full program")
    return boilerplate.full_code.replace(boilerplate.code, user_code, 1)
