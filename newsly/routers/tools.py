import re
import unicodedata
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_admin
from ..models.tool import Tool
from ..schemas.tool_schema import ToolCreate, ToolOut

router = APIRouter(prefix="/tools", tags=["tools"])


def tool_slug(name: str) -> str:
    """Slug for a tool name, e.g. Notion AI+ becomes notion-ai-plus and Character.ai becomes character-ai."""
    ascii_name = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    words = ascii_name.lower().replace("+", " plus ").replace("&", " and ")
    return "-".join(re.findall(r"[a-z0-9]+", words))


@router.get("", response_model=List[ToolOut])
def list_tools(
    category: Optional[str] = Query(default=None, description="Filter by category (e.g. WRITING, CODING)"),
    free_only: bool = Query(default=False, description="Only tools with a free tier"),
    db: Session = Depends(get_db),
):
    """
    AI tools that can be featured in an admin newsletter.
    """
    query = db.query(Tool)
    if category:
        query = query.filter(Tool.category == category.strip().upper())
    if free_only:
        query = query.filter(Tool.free_tier == True)  # noqa: E712
    return query.order_by(Tool.name.asc()).all()


@router.post("", response_model=ToolOut, status_code=201, dependencies=[Depends(require_admin)])
def create_tool(payload: ToolCreate, db: Session = Depends(get_db)):
    """
    Add a tool.

    - The slug is derived from the name unless one is given, and made unique.
    """
    existing_by_name = db.query(Tool).filter(Tool.name == payload.name.strip()).first()
    if existing_by_name:
        raise HTTPException(status_code=400, detail="A tool with that name already exists")

    base_slug = tool_slug(payload.slug or payload.name)
    if not base_slug:
        raise HTTPException(status_code=400, detail="Could not build a slug for the tool")

    slug = base_slug
    counter = 1
    while db.query(Tool).filter(Tool.slug == slug).first():
        slug = f"{base_slug}-{counter}"
        counter += 1

    tool = Tool(
        name=payload.name.strip(),
        slug=slug,
        tagline=payload.tagline,
        website_url=payload.website_url,
        category=payload.category,
        price_inr=payload.price_inr,
        free_tier=bool(payload.free_tier),
    )

    db.add(tool)
    db.commit()
    db.refresh(tool)

    return tool


@router.get("/{tool_id}", response_model=ToolOut)
def get_tool(tool_id: int, db: Session = Depends(get_db)):
    tool = db.query(Tool).filter(Tool.id == tool_id).first()
    if not tool:
        raise HTTPException(status_code=404, detail="Tool not found")
    return tool
