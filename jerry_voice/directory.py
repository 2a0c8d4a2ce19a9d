"""
Read-only contact directory: students, TPOs and job descriptions
Loaded once from CONTACTS_FILE; the dashboard owns editing these records.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from jerry_voice.models import ContactType

UNKNOWN_STUDENT = "Unknown Student"
UNKNOWN_TPO = "TPO Contact"


class ContactDirectory:
    def __init__(self, students=None, tpos=None, jobs=None):
        self._students = {str(s["id"]): s for s in students or []}
        self._tpos = {str(t["id"]): t for t in tpos or []}
        self._jobs = {str(j["id"]): j for j in jobs or []}

    @classmethod
    def from_file(cls, path) -> "ContactDirectory":
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Contacts file not found: {path} - directory is empty")
            return cls()
        except json.JSONDecodeError as e:
            logger.error(f"Contacts file {path} is not valid JSON: {e}")
            return cls()
        directory = cls(data.get("students"), data.get("tpos"), data.get("jobs"))
        logger.info(f"Loaded {len(directory._students)} students, {len(directory._tpos)} TPOs, "
                    f"{len(directory._jobs)} jobs from {path.name}")
        return directory

    def get_student(self, student_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._students.get(str(student_id)) if student_id is not None else None

    def get_tpo(self, tpo_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._tpos.get(str(tpo_id)) if tpo_id is not None else None

    def get_job(self, job_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._jobs.get(str(job_id)) if job_id is not None else None

    def resolve_name(self, contact_type: ContactType, contact_id: Optional[str]) -> str:
        if contact_type == ContactType.STUDENT:
            student = self.get_student(contact_id)
            return student["name"] if student else UNKNOWN_STUDENT
        tpo = self.get_tpo(contact_id)
        return tpo["name"] if tpo else UNKNOWN_TPO

    def resume_summary(self, student_id: Optional[str]) -> Optional[Dict[str, Any]]:
        student = self.get_student(student_id)
        if not student:
            return None
        experience = student.get("experience") or []
        if isinstance(experience, str):
            experience = [experience]
        return {
            "name": student.get("name"),
            "skills": list(student.get("skills") or []),
            "experience": list(experience),
            "projects": list(student.get("projects") or []),
        }

    def job_for(self, job_id: Optional[str], student_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """The job linked to the call, else the student's first applied position"""
        job = self.get_job(job_id)
        if job or not student_id:
            return job
        student = self.get_student(student_id) or {}
        for position in student.get("applied_positions") or []:
            job = self.get_job(position)
            if job:
                return job
        return None
