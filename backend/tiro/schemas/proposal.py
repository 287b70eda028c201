"""Staffing schemas: proposals to students and students proposed to the owner."""
from datetime import datetime
from pydantic import BaseModel, Field
from tiro.schemas.project import StudentSummary


class SendProposalsRequest(BaseModel):
    student_ids: list[str] = Field(..., min_length=1)


class ProposalAnswer(BaseModel):
    accepted: bool


class ProposeStudentsRequest(BaseModel):
    # empty means every student who accepted
    student_ids: list[str] | None = None


class SelectStudentRequest(BaseModel):
    student_id: str


class ProposalResponse(BaseModel):
    id: str
    project_id: str
    student_id: str
    accepted: bool | None
    created_at: datetime
    student: StudentSummary | None = None

    model_config = {"from_attributes": True}


class ProposedStudentResponse(BaseModel):
    id: str
    project_id: str
    student_id: str
    created_at: datetime
    student: StudentSummary | None = None

    model_config = {"from_attributes": True}


class StudentSelectionRequest(BaseModel):
    project_id: str
    selected_student_id: str


class StudentSelectionResponse(BaseModel):
    project_id: str
    selected_student_id: str
    released_student_ids: list[str]
