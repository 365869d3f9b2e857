from fastapi import APIRouter, Depends, HTTPException, status, Form
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, or_
from sqlmodel import Session, select
from datetime import timedelta
from database import get_session
from models import User
from auth import get_password_hash, verify_password, create_access_token, get_current_user, ACCESS_TOKEN_EXPIRE_MINUTES
from config import config
from typing import Annotated
import logging
import re

router = APIRouter(prefix="/auth", tags=["auth"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def public_user(user: User) -> dict:
    return {"id": user.id, "username": user.username, "email": user.email}


def issue_token(user: User) -> dict:
    access_token = create_access_token(
        data={"sub": str(user.id)}, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return {"access_token": access_token, "token_type": "bearer", "user": public_user(user)}


@router.post("/register")
def register(
    username: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    session: Session = Depends(get_session),
):
    username = username.strip()
    email = email.strip()
    if not 3 <= len(username) <= 20:
        raise HTTPException(status_code=400, detail="Username must be between 3 and 20 characters")
    if len(password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    try:
        user_count = session.exec(select(func.count()).select_from(User)).one()
        if user_count >= config.MAX_USERS:
            raise HTTPException(status_code=400, detail="Registration is currently closed. Maximum number of users reached.")
        if session.exec(select(User).where(User.username == username)).first():
            raise HTTPException(status_code=400, detail="Username already exists")
        if session.exec(select(User).where(User.email == email)).first():
            raise HTTPException(status_code=400, detail="Email already exists")

        new_user = User(username=username, email=email, password_hash=get_password_hash(password))
        session.add(new_user)
        session.commit()
        session.refresh(new_user)
        logging.info(f"User registered successfully: {new_user.id}")
        return issue_token(new_user)
    except HTTPException:
        raise
    except Exception as e:
        logging.exception("Error during registration")
        raise HTTPException(status_code=500, detail=f"Registration failed: {e}")


@router.post("/token")
def login_for_access_token(form_data: Annotated[OAuth2PasswordRequestForm, Depends()], session: Session = Depends(get_session)):
    user = session.exec(
        select(User).where(or_(User.username == form_data.username, User.email == form_data.username))
    ).first()
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return issue_token(user)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return public_user(user)
