# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API request/response. JSON uses camelCase field names."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(alias="lastName", min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1)


class SendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(pattern=r"^\d{6}$")


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str


class AuthResponse(BaseModel):
    success: bool = True
    user: UserResponse
    token: str


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


class MeResponse(BaseModel):
    success: bool = True
    user: UserResponse


class HealthResponse(BaseModel):
    success: bool
    database: str
