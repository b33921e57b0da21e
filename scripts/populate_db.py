import asyncio

from sqlmodel import select

from careerhub.app.config import get_settings
from careerhub.app.db import get_session_factory, init_db
from careerhub.app.models import Employer, Job, JobSkill, Proficiency, Role, Student, StudentSkill, User
from careerhub.app.services.matcher import normalize_skill_name


async def main():
    await init_db()
    async with get_session_factory()() as session:
        # insert employer if none
        res = (await session.exec(select(Employer))).all()
        if not res:
            owner = User(full_name="Acme Recruiting", email="jobs@acme.example", role=Role.employer)
            session.add(owner)
            await session.flush()
            employer = Employer(user_id=owner.id, name="Acme", industry="Software")
            session.add(employer)
            await session.flush()
            job = Job(employer_id=employer.id, title="ML Engineer",
                      description="Experience with python, pytorch, nlp, aws")
            session.add(job)
            await session.flush()
            for name in ["python", "pytorch", "natural language processing", "aws"]:
                session.add(JobSkill(job_id=job.id, name=normalize_skill_name(name), level=Proficiency.intermediate))
            await session.commit()
            print("Inserted employer id", employer.id, "with job id", job.id)
        else:
            print("Employer exists, id:", res[0].id)

        # insert student if none
        res = (await session.exec(select(Student))).all()
        if not res:
            user = User(full_name="Test Candidate", email="test@example.com", role=Role.student)
            session.add(user)
            await session.flush()
            student = Student(user_id=user.id, first_name="Test", last_name="Candidate", email=user.email)
            session.add(student)
            await session.flush()
            for name in ["python", "pytorch", "natural language processing"]:
                session.add(StudentSkill(student_id=student.id, name=name, proficiency=Proficiency.advanced))
            await session.commit()
            print("Inserted student id", student.id)
        else:
            print("Student exists, id:", res[0].id)


if __name__ == "__main__":
    print("Seeding", get_settings().database_url)
    asyncio.run(main())
