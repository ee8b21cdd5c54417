"""Skill extraction for learning units.

Two tiers:
  1. the generative collaborator proposes 1-10 skills for the unit, validated
     against SkillExtractionResponse;
  2. if the call fails or the answer does not validate, a single generic
     skill named after the unit is used, with its category taken from
     CATEGORY_KEYWORDS.

The call is made once. There is no retry: the fallback is immediate.

Extracted skills map onto the canonical catalog by case-insensitive exact
name. There is no fuzzy matching, so "Java OOP Inheritance" and "Java
Inheritance" are two different skills.
"""

import json
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from pydantic import ValidationError

from skilltrack.config import settings
from skilltrack.db import mastery_store as store
from skilltrack.db.database import is_unique_violation, transaction
from skilltrack.models.extraction import (
    ExtractedSkill,
    MappedSkill,
    SkillExtractionResponse,
    SkillExtractionResult,
    SkillSeed,
    UnitContent,
)
from skilltrack.models.mastery import PracticeType, Skill, SkillDifficulty
from skilltrack.services.ai_client import ai_chat
from skilltrack.services.numbers import round_half_up
from skilltrack.services.prompts import load_prompt

logger = logging.getLogger(__name__)

ChatFn = Callable[..., Awaitable[str]]

# Searched in order in the lowercased objective context. "javascript" comes
# before "java" because it contains it; "js" only counts as a whole word.
CATEGORY_KEYWORDS = [
    (re.compile(r"javascript|\bjs\b"), "javascript_fundamentals"),
    (re.compile(r"java"), "java_fundamentals"),
    (re.compile(r"python"), "python_fundamentals"),
    (re.compile(r"react"), "react"),
    (re.compile(r"spring"), "spring_boot"),
    (re.compile(r"database|sql"), "database"),
    (re.compile(r"algorithm"), "algorithms"),
    (re.compile(r"data structure"), "data_structures"),
]
DEFAULT_CATEGORY = "general"

FALLBACK_TARGET_LEVEL = 50

CATALOG_PATH = Path(__file__).parent.parent / "data" / "skill_catalog.yaml"


def infer_category(objective_context: str) -> str:
    text = (objective_context or "").lower()
    for pattern, category in CATEGORY_KEYWORDS:
        if pattern.search(text):
            return category
    return DEFAULT_CATEGORY


def fallback_skills(unit_title: str, objective_context: str) -> list[ExtractedSkill]:
    """One beginner-level practice skill named after the unit."""
    return [
        ExtractedSkill(
            skill_name=unit_title,
            category=infer_category(objective_context),
            difficulty=SkillDifficulty.BEGINNER,
            target_level=FALLBACK_TARGET_LEVEL,
            practice_type=PracticeType.PRACTICE,
        )
    ]


def _build_user_message(
    prompt: dict,
    unit: UnitContent,
    objective_context: str,
    day_number: Optional[int],
    previous_skills: Optional[list[str]],
    language: str,
) -> str:
    instructions = prompt["language_instructions"]

    tasks_text = "\n\n".join(
        f"Task {i}: {task.title}"
        + (f"\nDescription: {task.description}" if task.description else "")
        + (f"\nType: {task.type}" if task.type else "")
        for i, task in enumerate(unit.tasks, 1)
    )

    previous_skills_text = ""
    if previous_skills:
        previous_skills_text = "\n\nPreviously covered skills: " + ", ".join(previous_skills)

    return prompt["user_template"].format(
        language_instruction=instructions.get(language, instructions["en"]),
        objective_context=objective_context,
        title=unit.title,
        description_line=f"Description: {unit.description}" if unit.description else "",
        day_number=day_number or "Unknown",
        tasks_text=tasks_text or "No tasks listed.",
        previous_skills_text=previous_skills_text,
    )


async def _request_skills(
    unit: UnitContent,
    objective_context: str,
    day_number: Optional[int],
    previous_skills: Optional[list[str]],
    language: str,
    chat: ChatFn,
) -> Optional[list[ExtractedSkill]]:
    """Ask the generative collaborator once. None when its answer is unusable."""
    prompt = load_prompt("extract_skills.yaml")
    user_message = _build_user_message(
        prompt, unit, objective_context, day_number, previous_skills, language
    )

    try:
        result_text = await chat(
            messages=[
                {"role": "system", "content": prompt["system_prompt"]},
                {"role": "user", "content": user_message},
            ],
            use_case="extraction",
            temperature=settings.extraction_temperature,
            json_mode=True,
            max_tokens=2000,
            max_attempts=1,
        )
    except Exception as exc:
        logger.error("AI call failed during skill extraction for %r: %s", unit.title, exc)
        return None

    if not result_text:
        logger.warning("AI returned an empty skill extraction for %r", unit.title)
        return None

    try:
        response = SkillExtractionResponse.model_validate(json.loads(result_text))
    except (TypeError, json.JSONDecodeError, ValidationError) as exc:
        logger.warning("AI skill extraction for %r failed validation: %s", unit.title, exc)
        return None

    logger.debug("Extracted %d skill(s) for %r: %s", len(response.skills), unit.title, response.reasoning)
    return list(response.skills)


async def extract_skills(
    unit: UnitContent | dict,
    objective_context: str,
    *,
    day_number: Optional[int] = None,
    previous_skills: Optional[list[str]] = None,
    language: str = "en",
    chat: ChatFn = ai_chat,
) -> list[ExtractedSkill]:
    """Skills taught or practiced by a unit. Always returns at least one skill."""
    unit = UnitContent.model_validate(unit)
    skills = await _request_skills(
        unit, objective_context, day_number, previous_skills, language, chat
    )
    return skills or fallback_skills(unit.title, objective_context)


async def _create_or_fetch_skill(db, extracted: ExtractedSkill) -> tuple[dict, bool]:
    """Create the skill; if another writer created the name first, use theirs."""
    try:
        async with transaction(db):
            skill = await store.create_skill(
                db,
                name=extracted.skill_name,
                category=extracted.category,
                difficulty=extracted.difficulty.value,
                description=f"Auto-generated skill for {extracted.skill_name}",
            )
        return skill, True
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        logger.info("Skill %r was created concurrently, re-fetching", extracted.skill_name)

    skill = await store.find_skill_by_name(db, extracted.skill_name)
    if skill is None:
        raise RuntimeError(f"Skill {extracted.skill_name!r} vanished after a unique violation")
    return skill, False


async def map_to_canonical_skills(db, extracted_skills: list[ExtractedSkill]) -> list[MappedSkill]:
    """Resolve extracted skills to catalog skills, creating the missing ones."""
    mapped = []
    for extracted in extracted_skills:
        skill = await store.find_skill_by_name(db, extracted.skill_name)
        created = False
        if skill is None:
            skill, created = await _create_or_fetch_skill(db, extracted)
            if created:
                logger.info("Created skill %r (%s)", skill["name"], skill["category"])

        mapped.append(MappedSkill(
            skill_id=skill["id"],
            skill_name=skill["name"],
            target_level=round_half_up(extracted.target_level),
            practice_type=extracted.practice_type,
            created=created,
        ))
    return mapped


async def extract_and_map_skills(
    db,
    unit: UnitContent | dict,
    objective_context: str,
    *,
    day_number: Optional[int] = None,
    previous_skills: Optional[list[str]] = None,
    language: str = "en",
    chat: ChatFn = ai_chat,
) -> SkillExtractionResult:
    unit = UnitContent.model_validate(unit)
    extracted = await _request_skills(
        unit, objective_context, day_number, previous_skills, language, chat
    )
    used_fallback = not extracted
    if used_fallback:
        extracted = fallback_skills(unit.title, objective_context)

    mapped = await map_to_canonical_skills(db, extracted)

    return SkillExtractionResult(
        extracted_skills=extracted,
        mapped_skills=mapped,
        new_skills_created=sum(1 for m in mapped if m.created),
        used_fallback=used_fallback,
    )


async def link_unit_skills(
    db,
    unit_id: str,
    mapped_skills: list[MappedSkill],
    user_id: Optional[str] = None,
) -> None:
    """Declare the unit's target skills, snapshotting the learner's current level."""
    async with transaction(db):
        for mapped in mapped_skills:
            pre_level = None
            if user_id:
                record = await store.get_mastery_record(db, user_id, mapped.skill_id)
                pre_level = record["level"] if record else 0
            await store.link_unit_skill(
                db,
                unit_id,
                mapped.skill_id,
                target_level=mapped.target_level,
                practice_type=mapped.practice_type.value,
                pre_unit_level=pre_level,
            )


async def bulk_create_skills(db, seeds: list[SkillSeed | dict]) -> list[Skill]:
    """Seed the catalog. Existing names are skipped; parents are resolved by name."""
    created = []
    for item in seeds:
        seed = SkillSeed.model_validate(item)
        if await store.find_skill_by_name(db, seed.name):
            logger.info("Skill %r already exists, skipping", seed.name)
            continue

        parent_id = None
        if seed.parent_skill_name:
            parent = await store.find_skill_by_name(db, seed.parent_skill_name)
            if parent:
                parent_id = parent["id"]
            else:
                logger.warning("Parent skill %r not found for %r", seed.parent_skill_name, seed.name)

        async with transaction(db):
            skill = await store.create_skill(
                db,
                name=seed.name,
                category=seed.category,
                difficulty=seed.difficulty.value,
                description=seed.description,
                parent_skill_id=parent_id,
                prerequisites=seed.prerequisites,
            )
        created.append(Skill(**skill))
    return created


def load_skill_catalog(groups: Optional[list[str]] = None) -> list[SkillSeed]:
    """Skill seeds from data/skill_catalog.yaml, optionally limited to some groups."""
    with open(CATALOG_PATH, "r", encoding="utf-8") as f:
        catalog = yaml.safe_load(f)

    unknown = set(groups or []) - set(catalog)
    if unknown:
        raise ValueError(f"Unknown skill catalog group(s): {', '.join(sorted(unknown))}")

    seeds = []
    for group, entries in catalog.items():
        if groups and group not in groups:
            continue
        seeds.extend(SkillSeed.model_validate(entry) for entry in entries)
    return seeds
