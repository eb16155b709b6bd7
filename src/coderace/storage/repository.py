"""Persistence facade backed by SQLModel + SQLite."""

import logging
import sqlite3
from pathlib import Path

from sqlalchemy import event, or_
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, and_, col, create_engine, select

from coderace.config import defaults
from coderace.errors import NotFoundError
from coderace.storage.models import (
    Agent,
    BaseDirectory,
    Competition,
    ExecutionStatus,
    Project,
    Task,
    TaskExecution,
    TaskStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int = 5000) -> Engine:
    """Build SQLAlchemy engine with foreign keys and a busy timeout."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


class Repository:
    """CRUD over the coderace tables.

    Every call opens its own session; returned rows are detached copies.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        """Create missing tables."""
        SQLModel.metadata.create_all(self.engine)
        logger.debug("Schema ready in %s", self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""
        self.engine.dispose()

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _add(self, row):
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    # --- projects ---

    def create_project(self, name: str) -> Project:
        return self._add(Project(name=name))

    def get_project(self, project_id: int) -> Project | None:
        with self._session() as session:
            return session.get(Project, project_id)

    def list_projects(self) -> list[Project]:
        with self._session() as session:
            return list(session.exec(select(Project).order_by(col(Project.id))).all())

    def delete_project(self, project_id: int) -> bool:
        """Delete a project and its base directories.

        Tasks must be removed first.
        """
        with self._session() as session:
            session.exec(
                sa_delete(BaseDirectory).where(col(BaseDirectory.project_id) == project_id)
            )
            result = session.exec(sa_delete(Project).where(col(Project.id) == project_id))
            session.commit()
            return result.rowcount == 1

    # --- base directories ---

    def create_base_directory(
        self,
        project_id: int,
        path: str,
        *,
        git_initialized: bool = False,
        setup_commands: str = "",
        teardown_commands: str = "",
        dev_server_setup_commands: str = "",
        dev_server_teardown_commands: str = "",
    ) -> BaseDirectory:
        if self.get_project(project_id) is None:
            raise NotFoundError("project", project_id)
        return self._add(
            BaseDirectory(
                project_id=project_id,
                path=path,
                git_initialized=git_initialized,
                setup_commands=setup_commands,
                teardown_commands=teardown_commands,
                dev_server_setup_commands=dev_server_setup_commands,
                dev_server_teardown_commands=dev_server_teardown_commands,
            )
        )

    def get_base_directory(self, base_directory_id: int) -> BaseDirectory | None:
        with self._session() as session:
            return session.get(BaseDirectory, base_directory_id)

    def list_base_directories(self, project_id: int) -> list[BaseDirectory]:
        with self._session() as session:
            return list(
                session.exec(
                    select(BaseDirectory)
                    .where(BaseDirectory.project_id == project_id)
                    .order_by(col(BaseDirectory.id))
                ).all()
            )

    # --- tasks ---

    def create_task(
        self,
        project_id: int,
        base_directory_id: int,
        title: str,
        description: str = "",
    ) -> Task:
        base_directory = self.get_base_directory(base_directory_id)
        if base_directory is None or base_directory.project_id != project_id:
            raise NotFoundError("base directory", base_directory_id)
        return self._add(
            Task(
                project_id=project_id,
                base_directory_id=base_directory_id,
                title=title,
                description=description,
            )
        )

    def get_task(self, task_id: int) -> Task | None:
        with self._session() as session:
            return session.get(Task, task_id)

    def list_tasks(self, project_id: int | None = None) -> list[Task]:
        with self._session() as session:
            query = select(Task)
            if project_id is not None:
                query = query.where(Task.project_id == project_id)
            return list(session.exec(query.order_by(col(Task.id))).all())

    def update_task_status(self, task_id: int, status: TaskStatus) -> bool:
        with self._session() as session:
            result = session.exec(
                sa_update(Task).where(col(Task.id) == task_id).values(status=status.value)
            )
            session.commit()
            return result.rowcount == 1

    def delete_task(self, task_id: int) -> bool:
        with self._session() as session:
            result = session.exec(sa_delete(Task).where(col(Task.id) == task_id))
            session.commit()
            return result.rowcount == 1

    # --- agents ---

    def create_agent(
        self,
        name: str,
        command: str,
        params: str = "",
        *,
        elo_rating: float = defaults.DEFAULT_ELO_RATING,
    ) -> Agent:
        return self._add(Agent(name=name, command=command, params=params, elo_rating=elo_rating))

    def get_agent(self, agent_id: int) -> Agent | None:
        with self._session() as session:
            return session.get(Agent, agent_id)

    def get_agent_by_name(self, name: str) -> Agent | None:
        with self._session() as session:
            return session.exec(select(Agent).where(Agent.name == name)).first()

    def list_agents(self) -> list[Agent]:
        with self._session() as session:
            return list(session.exec(select(Agent).order_by(col(Agent.id))).all())

    def list_agents_by_rating(self) -> list[Agent]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Agent).order_by(col(Agent.elo_rating).desc(), col(Agent.id))
                ).all()
            )

    def apply_rating_update(
        self,
        agent_id: int,
        *,
        rating: float,
        wins: int = 0,
        losses: int = 0,
        draws: int = 0,
    ) -> None:
        """Set the rating and bump games played plus one outcome counter."""
        with self._session() as session:
            session.exec(
                sa_update(Agent)
                .where(col(Agent.id) == agent_id)
                .values(
                    elo_rating=rating,
                    games_played=Agent.games_played + 1,
                    wins=Agent.wins + wins,
                    losses=Agent.losses + losses,
                    draws=Agent.draws + draws,
                )
            )
            session.commit()

    # --- executions ---

    def create_execution(
        self,
        task_id: int,
        agent_id: int,
        base_directory_id: int,
        status: ExecutionStatus = ExecutionStatus.STARTING,
    ) -> TaskExecution:
        return self._add(
            TaskExecution(
                task_id=task_id,
                agent_id=agent_id,
                base_directory_id=base_directory_id,
                status=status.value,
            )
        )

    def get_execution(self, execution_id: int) -> TaskExecution | None:
        with self._session() as session:
            return session.get(TaskExecution, execution_id)

    def list_executions(self, task_id: int | None = None) -> list[TaskExecution]:
        with self._session() as session:
            query = select(TaskExecution)
            if task_id is not None:
                query = query.where(TaskExecution.task_id == task_id)
            return list(session.exec(query.order_by(col(TaskExecution.id))).all())

    def update_execution_status(self, execution_id: int, status: ExecutionStatus) -> bool:
        if status is ExecutionStatus.WAITING:
            raise ValueError("waiting is derived and cannot be stored")
        with self._session() as session:
            result = session.exec(
                sa_update(TaskExecution)
                .where(col(TaskExecution.id) == execution_id)
                .values(status=status.value, updated_at=utc_now())
            )
            session.commit()
            return result.rowcount == 1

    def set_execution_session(self, execution_id: int, session_name: str) -> bool:
        """Attach a session name; only succeeds while none is set."""
        with self._session() as session:
            result = session.exec(
                sa_update(TaskExecution)
                .where(
                    col(TaskExecution.id) == execution_id,
                    col(TaskExecution.session_name).is_(None),
                )
                .values(session_name=session_name, updated_at=utc_now())
            )
            session.commit()
            return result.rowcount == 1

    def set_dev_session(self, execution_id: int, session_name: str | None) -> bool:
        with self._session() as session:
            result = session.exec(
                sa_update(TaskExecution)
                .where(col(TaskExecution.id) == execution_id)
                .values(dev_session_name=session_name, updated_at=utc_now())
            )
            session.commit()
            return result.rowcount == 1

    def delete_execution(self, execution_id: int) -> bool:
        with self._session() as session:
            result = session.exec(
                sa_delete(TaskExecution).where(col(TaskExecution.id) == execution_id)
            )
            session.commit()
            return result.rowcount == 1

    # --- competitions ---

    def create_competition(self, competition: Competition) -> Competition:
        return self._add(competition)

    def get_competition(self, competition_id: int) -> Competition | None:
        with self._session() as session:
            return session.get(Competition, competition_id)

    def list_competitions(self, task_id: int | None = None) -> list[Competition]:
        with self._session() as session:
            query = select(Competition)
            if task_id is not None:
                query = query.where(Competition.task_id == task_id)
            return list(session.exec(query.order_by(col(Competition.id))).all())

    def find_competition(
        self, task_id: int, execution_a_id: int, execution_b_id: int
    ) -> Competition | None:
        """Find a competition between two executions of a task, in either order."""
        with self._session() as session:
            return session.exec(
                select(Competition)
                .where(
                    Competition.task_id == task_id,
                    or_(
                        and_(
                            Competition.agent1_execution_id == execution_a_id,
                            Competition.agent2_execution_id == execution_b_id,
                        ),
                        and_(
                            Competition.agent1_execution_id == execution_b_id,
                            Competition.agent2_execution_id == execution_a_id,
                        ),
                    ),
                )
                .limit(1)
            ).first()

    def list_competitions_for_agent(self, agent_id: int) -> list[Competition]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Competition)
                    .where(
                        or_(Competition.agent1_id == agent_id, Competition.agent2_id == agent_id)
                    )
                    .order_by(col(Competition.created_at), col(Competition.id))
                ).all()
            )

    def list_competitions_between(self, agent_a_id: int, agent_b_id: int) -> list[Competition]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Competition)
                    .where(
                        or_(
                            and_(
                                Competition.agent1_id == agent_a_id,
                                Competition.agent2_id == agent_b_id,
                            ),
                            and_(
                                Competition.agent1_id == agent_b_id,
                                Competition.agent2_id == agent_a_id,
                            ),
                        )
                    )
                    .order_by(col(Competition.id))
                ).all()
            )
