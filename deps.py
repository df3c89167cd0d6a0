from fastapi import Request

from config import Settings
from database import Database


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sms_gateway(request: Request):
    return request.app.state.sms


def get_image_host(request: Request):
    return request.app.state.images


def get_token_signer(request: Request):
    return request.app.state.signer
