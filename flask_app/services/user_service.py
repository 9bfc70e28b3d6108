"""
Service for server accounts and the global identities linking them.
"""
from typing import Any, Dict, List, Optional

from flask_app.models import db, GlobalUser, Server, ServerUser


class UserService:
    """Service for managing server users and global users."""

    def _server_user(self, server_user_id: int) -> ServerUser:
        server_user = db.session.get(ServerUser, server_user_id)
        if server_user is None:
            raise LookupError(f"Server user {server_user_id} not found")
        return server_user

    def _global_user(self, global_user_id: int) -> GlobalUser:
        global_user = db.session.get(GlobalUser, global_user_id)
        if global_user is None:
            raise LookupError(f"Global user {global_user_id} not found")
        return global_user

    def list_users(self) -> Dict[str, List[Dict[str, Any]]]:
        """All global users with their linked accounts, plus unlinked accounts."""
        accounts = (
            db.session.query(ServerUser, Server.name)
            .join(Server, ServerUser.server_id == Server.id)
            .order_by(ServerUser.username)
            .all()
        )

        linked: Dict[int, List[Dict[str, Any]]] = {}
        unlinked = []
        for server_user, server_name in accounts:
            entry = {
                'id': server_user.id,
                'username': server_user.username,
                'emby_user_id': server_user.emby_user_id,
                'server_id': server_user.server_id,
                'server_name': server_name,
            }
            if server_user.global_user_id is None:
                unlinked.append(entry)
            else:
                linked.setdefault(server_user.global_user_id, []).append(entry)

        global_users = [
            {
                'id': gu.id,
                'name': gu.name,
                'avatar': gu.avatar,
                'is_hidden': gu.is_hidden,
                'server_users': linked.get(gu.id, []),
            }
            for gu in GlobalUser.query.order_by(GlobalUser.name).all()
        ]
        return {'global_users': global_users, 'unlinked_users': unlinked}

    def create_global_user(self, name: str, avatar: Optional[str] = None) -> GlobalUser:
        """Create a global user. Raises ValueError on an empty name."""
        if not name or not name.strip():
            raise ValueError("Name is required")
        global_user = GlobalUser(name=name.strip(), avatar=avatar)
        db.session.add(global_user)
        db.session.commit()
        return global_user

    def delete_global_user(self, global_user_id: int) -> None:
        """Delete a global user; its accounts stay and become unlinked."""
        global_user = self._global_user(global_user_id)
        for server_user in list(global_user.server_users):
            server_user.global_user_id = None
        db.session.delete(global_user)
        db.session.commit()

    def link(self, server_user_id: int, global_user_id: int) -> ServerUser:
        """Attach a server account to a global user."""
        server_user = self._server_user(server_user_id)
        self._global_user(global_user_id)
        server_user.global_user_id = global_user_id
        db.session.commit()
        return server_user

    def unlink(self, server_user_id: int) -> ServerUser:
        """Detach a server account from its global user."""
        server_user = self._server_user(server_user_id)
        server_user.global_user_id = None
        db.session.commit()
        return server_user

    def delete_server_user(self, server_user_id: int) -> None:
        """Delete a server account together with its play history."""
        server_user = self._server_user(server_user_id)
        db.session.delete(server_user)
        db.session.commit()
