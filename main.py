"""
Reference query service targeted by the benchmark.

Databases are sqlite files under DATA_DIR. A session is a read-only
connection to one database, opened and closed over HTTP, so each benchmark
trial pays for a real session setup, one query, and a teardown.
"""
import sqlite3
import threading
from dataclasses import dataclass
from uuid import uuid4

import fastapi
import uvicorn
from fastapi import FastAPI, HTTPException, Response
from fastapi.concurrency import asynccontextmanager
from pydantic import BaseModel

from database import (
    DatabaseExistsError,
    DatabaseNotFoundError,
    create_database,
    drop_database,
    init_data_dir,
    open_readonly,
)


@dataclass
class Session:
    database: str
    conn: sqlite3.Connection


class SessionRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def open(self, database: str) -> str:
        conn = open_readonly(database)
        session_id = uuid4().hex
        with self._lock:
            self._sessions[session_id] = Session(database, conn)
        return session_id

    def get(self, session_id: str) -> Session:
        with self._lock:
            return self._sessions[session_id]

    def close(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id)
        session.conn.close()

    def close_database(self, database: str) -> int:
        """Close every session on ``database``; returns how many were open."""
        with self._lock:
            ids = [sid for sid, s in self._sessions.items() if s.database == database]
            sessions = [self._sessions.pop(sid) for sid in ids]
        for session in sessions:
            session.conn.close()
        return len(sessions)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.conn.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


sessions = SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_data_dir()
    yield
    sessions.close_all()


app = fastapi.FastAPI(lifespan=lifespan)


class CreateDatabaseRequest(BaseModel):
    name: str
    statements: list[str] = []  # DDL applied right after creation


class QueryRequest(BaseModel):
    sql: str


def _jsonable(value):
    if isinstance(value, bytes):
        return value.hex()
    return value


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/databases", status_code=201)
def create(request: CreateDatabaseRequest):
    try:
        create_database(request.name, request.statements)
    except DatabaseExistsError:
        raise HTTPException(status_code=409, detail=f"Database {request.name} already exists")
    except (ValueError, sqlite3.Error) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"database": request.name}


@app.delete("/databases/{name}", status_code=204)
def drop(name: str):
    sessions.close_database(name)
    try:
        drop_database(name)
    except DatabaseNotFoundError:
        raise HTTPException(status_code=404, detail=f"Database {name} not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(status_code=204)


@app.post("/databases/{name}/sessions", status_code=201)
def open_session(name: str):
    try:
        session_id = sessions.open(name)
    except DatabaseNotFoundError:
        raise HTTPException(status_code=404, detail=f"Database {name} not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"session_id": session_id}


@app.post("/sessions/{session_id}/query")
def query(session_id: str, request: QueryRequest):
    try:
        session = sessions.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    try:
        rows = session.conn.execute(request.sql).fetchall()
    except sqlite3.Error as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"rows": [[_jsonable(v) for v in row] for row in rows]}


@app.delete("/sessions/{session_id}", status_code=204)
def close_session(session_id: str):
    try:
        sessions.close(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return Response(status_code=204)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
