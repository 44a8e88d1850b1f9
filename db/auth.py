"""

# Criar um novo token de usuário
python -m db.auth create --owner="alguem" --expires_in_days=365

# Criar um token de administrador (aprova feedbacks)
python -m db.auth create --owner="revisor" --role=admin

# Ler todos os tokens
python -m db.auth read_all

"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Request, HTTPException
from dotenv import load_dotenv
import os

from db import engine

load_dotenv()
ENV = os.getenv("ENV", "prod").lower()

ROLES = ("user", "admin")

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Gerencia tokens da API.
    """
    def create(self, owner: str, role: str = "user", note: str = "", expires_in_days: int = 180):
        """
        Cria um novo token com tempo de expiração.

        Args:
            owner (str): Nome do dono do token.
            role (str): "user" ou "admin".
            note (str): Descrição.
            expires_in_days (int): Validade do token em dias.
        """
        if role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got '{role}'")
        token = str(uuid.uuid4())
        tokens_collection = engine.get_mongo_collection("api_tokens")

        now = datetime.now(timezone.utc)
        token_doc = {
            "token": token,
            "owner": owner,
            "role": role,
            "note": note,
            "created_at": now,
            "expires_at": now + timedelta(days=expires_in_days),
            "active": True
        }

        tokens_collection.insert_one(token_doc)
        print(f"✅ Token {role} criado (expira em {expires_in_days} dias): {token}")
        return token

    def read_all(self):
        """
        Lê e imprime todos os tokens armazenados no MongoDB.
        """
        tokens_collection = engine.get_mongo_collection("api_tokens")
        for t in tokens_collection.find():
            print({
                "token": t.get("token"),
                "owner": t.get("owner"),
                "role": t.get("role", "user"),
                "note": t.get("note"),
                "active": t.get("active"),
                "created_at": t.get("created_at")
            })

    def revoke(self, token: str):
        """
        Desativa um token sem apagá-lo.
        """
        tokens_collection = engine.get_mongo_collection("api_tokens")
        result = tokens_collection.update_one({"token": token}, {"$set": {"active": False}})
        print(f"🔒 Tokens desativados: {result.modified_count}")

    def delete_expired(self):
        """
        Remove tokens expirados da base.
        """
        tokens_collection = engine.get_mongo_collection("api_tokens")
        result = tokens_collection.delete_many({"expires_at": {"$lt": datetime.now(timezone.utc)}})
        print(f"🧹 Tokens expirados removidos: {result.deleted_count}")


def verify_token(request: Request) -> dict:
    """
    Valida o header Authorization e retorna o documento do token.
    """
    token = request.headers.get("Authorization")
    if not token:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    token = token.replace("Bearer ", "")
    tokens_collection = engine.get_mongo_collection("api_tokens")
    token_entry = tokens_collection.find_one({"token": token, "active": True})

    if not token_entry:
        raise HTTPException(status_code=403, detail="Invalid or inactive token")

    expires_at = token_entry["expires_at"]
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) > expires_at:
        raise HTTPException(status_code=403, detail="Token expired")

    return token_entry


async def conditional_auth(request: Request) -> str:
    """
    Retorna o 'owner' baseado no modo do ambiente (dev ou prod).
    Usado nas rotas que exigem um usuário autenticado.
    """
    if ENV == "dev":
        return "dev_user"
    try:
        return verify_token(request)["owner"]
    except HTTPException as he:
        raise he
    except Exception:
        logger.error("Token verification failed unexpectedly")
        raise HTTPException(status_code=401, detail="Authentication failed")


async def optional_auth(request: Request) -> Optional[str]:
    """
    Igual ao conditional_auth, mas retorna None quando não há header.
    Um token presente e inválido continua sendo rejeitado.
    """
    if ENV == "dev":
        return "dev_user"
    if not request.headers.get("Authorization"):
        return None
    return await conditional_auth(request)


async def admin_auth(request: Request) -> str:
    """
    Exige um token com role 'admin'.
    """
    if ENV == "dev":
        return "dev_admin"
    try:
        token_entry = verify_token(request)
    except HTTPException as he:
        raise he
    except Exception:
        logger.error("Token verification failed unexpectedly")
        raise HTTPException(status_code=401, detail="Authentication failed")
    if token_entry.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return token_entry["owner"]


if __name__ == "__main__":
    import fire
    fire.Fire(TokenManager)
