from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from skilltrack.models.mastery import PracticeType, SkillDifficulty


class UnitTask(BaseModel):
    title: str
    description: Optional[str] = None
    type: Optional[str] = None


class UnitContent(BaseModel):
    """The parts of a learning unit the extractor reads."""

    title: str = Field(min_length=1)
    description: Optional[str] = None
    tasks: list[UnitTask] = []

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class ExtractedSkill(BaseModel):
    """One skill proposed for a unit (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    skill_name: str = Field(alias="skillName", min_length=1)
    category: str = Field(min_length=1)
    difficulty: SkillDifficulty
    target_level: float = Field(alias="targetLevel", ge=0, le=100)
    practice_type: PracticeType = Field(alias="practiceType")


class GeneratedSkill(ExtractedSkill):
    """The stricter shape the generative collaborator must answer with."""

    skill_name: str = Field(alias="skillName", min_length=2, max_length=100)
    category: str = Field(min_length=2, max_length=50)


class SkillExtractionResponse(BaseModel):
    skills: list[GeneratedSkill] = Field(min_length=1, max_length=10)
    reasoning: str = Field(min_length=10)


class MappedSkill(BaseModel):
    skill_id: str
    skill_name: str
    target_level: int
    practice_type: PracticeType
    created: bool = False


class SkillExtractionResult(BaseModel):
    extracted_skills: list[ExtractedSkill] = []
    mapped_skills: list[MappedSkill] = []
    new_skills_created: int = 0
    used_fallback: bool = False


class SkillSeed(BaseModel):
    name: str
    category: str
    difficulty: SkillDifficulty = SkillDifficulty.BEGINNER
    description: Optional[str] = None
    parent_skill_name: Optional[str] = None
    prerequisites: list[str] = []
