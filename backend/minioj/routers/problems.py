from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from ..models import Problem, ProblemBoilerplate
from ..store import ResultStore

router = APIRouter()


class ProblemCreate(BaseModel):
    slug: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_-]+$")
    title: str


class BoilerplateIn(BaseModel):
    code: str = Field(min_length=1)
    full_code: str = Field(min_length=1)


def get_store(request: Request) -> ResultStore:
    return request.app.state.store


@router.post("/", response_model=Problem, status_code=201)
async def create_problem(problem: ProblemCreate, store: ResultStore = Depends(get_store)):
    return await store.create_problem(problem.slug, problem.title)


@router.get("/", response_model=list[Problem])
async def list_problems(store: ResultStore = Depends(get_store)):
    return await store.list_problems()


@router.put("/{slug}/boilerplates/{language_id}", response_model=ProblemBoilerplate)
async def put_boilerplate(
    slug: str,
    language_id: int,
    boilerplate: BoilerplateIn,
    store: ResultStore = Depends(get_store),
):
    problem = await store.get_problem_by_slug(slug)
    return await store.upsert_boilerplate(
        problem.id, language_id, boilerplate.code, boilerplate.full_code
    )
