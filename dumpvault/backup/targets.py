"""
Backup target handlers.

Each target describes how to reach one data source and how to dump it to, or
restore it from, a local artifact:
- PostgresqlTarget / PostgresqlDockerTarget: pg_dump / psql
- MysqlTarget / MysqlDockerTarget: mysqldump / mysql
- MongodbTarget / MongodbDockerTarget: mongodump / mongorestore
- FolderTarget: tar

The set of targets is closed. Every target implements every abstract method of
BackupTarget, so a new backend cannot be instantiated until both its backup and
its restore commands exist.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import MISSING, dataclass, fields
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Type

from dumpvault.models import ConfigurationError
from .artifacts import artifact_path as build_artifact_path
from .process import Command


class BackupPlan(NamedTuple):
    commands: List[Command]
    artifact_path: str
    cleanup: List[Command]


class BackupTarget(ABC):
    """Base class for all backup targets."""

    type_name: str = ''
    extension: str = ''

    @abstractmethod
    def backup_commands(self, artifact_path: str) -> List[Command]:
        """Commands that, run in order, produce the artifact at artifact_path."""

    @abstractmethod
    def restore_commands(self, artifact_path: str) -> List[Command]:
        """Commands that, run in order, load the artifact back into the source."""

    @abstractmethod
    def describe(self) -> str:
        """Short, secret-free description for logs."""

    def cleanup_commands(self, artifact_path: str) -> List[Command]:
        """
        Commands removing scratch files left by a backup or restore of artifact_path.

        Run after the backup or restore commands whatever their outcome; a failing
        cleanup command is logged and does not fail the operation.
        """
        return []

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'BackupTarget':
        """
        Build a target from its configuration mapping (without the 'type' tag).

        Raises:
            ConfigurationError: On missing required fields or unknown fields
        """
        known = {f.name: f for f in fields(cls)}

        unknown = sorted(set(config) - set(known))
        if unknown:
            raise ConfigurationError(
                f"Unknown field(s) for {cls.type_name} target: {', '.join(unknown)}"
            )

        kwargs = {}
        for name, spec in known.items():
            if name in config and config[name] is not None:
                value = config[name]
                if name == 'db_port':
                    try:
                        value = int(value)
                    except (TypeError, ValueError):
                        raise ConfigurationError(f"Invalid db_port for {cls.type_name} target: {value!r}")
                elif not isinstance(value, str):
                    raise ConfigurationError(f"Field {name} of {cls.type_name} target must be a string")
                kwargs[name] = value
            elif spec.default is MISSING:
                raise ConfigurationError(f"Missing field {name} for {cls.type_name} target")

        return cls(**kwargs)


def _mongo_auth_args(user: Optional[str], password: Optional[str]) -> List[str]:
    if not user:
        return []
    args = ['--username', user]
    if password is not None:
        args += ['--password', password]
    args += ['--authenticationDatabase', 'admin']
    return args


def _secrets(*values: Optional[str]) -> tuple:
    return tuple(v for v in values if v)


@dataclass(frozen=True)
class PostgresqlTarget(BackupTarget):
    db_name: str
    db_user: str
    db_password: str
    db_host: str = 'localhost'
    db_port: int = 5432

    type_name = 'postgresql'
    extension = 'sql'

    def _connection_args(self) -> List[str]:
        return ['-h', self.db_host, '-p', str(self.db_port), '-U', self.db_user, '-w']

    def backup_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=tuple(['pg_dump'] + self._connection_args() + [self.db_name]),
            env={'PGPASSWORD': self.db_password},
            stdout_path=artifact_path,
        )]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=tuple(['psql'] + self._connection_args() + ['-v', 'ON_ERROR_STOP=1', '-d', self.db_name]),
            env={'PGPASSWORD': self.db_password},
            stdin_path=artifact_path,
        )]

    def describe(self) -> str:
        return f"PostgreSQL {self.db_name}@{self.db_host}:{self.db_port} (user {self.db_user})"

    def __repr__(self):
        return f'<PostgresqlTarget {self.db_name}@{self.db_host}:{self.db_port}>'


@dataclass(frozen=True)
class PostgresqlDockerTarget(BackupTarget):
    docker_container: str
    db_name: str
    db_user: str
    db_password: str

    type_name = 'postgresql_docker'
    extension = 'sql'

    def backup_commands(self, artifact_path: str) -> List[Command]:
        # 'docker exec -e NAME' forwards NAME's value from this process' environment
        return [Command(
            argv=('docker', 'exec', '-e', 'PGPASSWORD', self.docker_container,
                  'pg_dump', '-U', self.db_user, '-w', self.db_name),
            env={'PGPASSWORD': self.db_password},
            stdout_path=artifact_path,
        )]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=('docker', 'exec', '-i', '-e', 'PGPASSWORD', self.docker_container,
                  'psql', '-U', self.db_user, '-w', '-v', 'ON_ERROR_STOP=1', '-d', self.db_name),
            env={'PGPASSWORD': self.db_password},
            stdin_path=artifact_path,
        )]

    def describe(self) -> str:
        return f"PostgreSQL {self.db_name} in container {self.docker_container} (user {self.db_user})"

    def __repr__(self):
        return f'<PostgresqlDockerTarget {self.db_name} container={self.docker_container}>'


@dataclass(frozen=True)
class MysqlTarget(BackupTarget):
    db_name: str
    db_user: str
    db_password: str
    db_host: str = 'localhost'
    db_port: int = 3306

    type_name = 'mysql'
    extension = 'sql'

    def _connection_args(self) -> List[str]:
        return ['-h', self.db_host, '-P', str(self.db_port), '-u', self.db_user]

    def backup_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=tuple(['mysqldump'] + self._connection_args() + [self.db_name]),
            env={'MYSQL_PWD': self.db_password},
            stdout_path=artifact_path,
        )]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=tuple(['mysql'] + self._connection_args() + [self.db_name]),
            env={'MYSQL_PWD': self.db_password},
            stdin_path=artifact_path,
        )]

    def describe(self) -> str:
        return f"MySQL {self.db_name}@{self.db_host}:{self.db_port} (user {self.db_user})"

    def __repr__(self):
        return f'<MysqlTarget {self.db_name}@{self.db_host}:{self.db_port}>'


@dataclass(frozen=True)
class MysqlDockerTarget(BackupTarget):
    docker_container: str
    db_name: str
    db_user: str
    db_password: str

    type_name = 'mysql_docker'
    extension = 'sql'

    def backup_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=('docker', 'exec', '-e', 'MYSQL_PWD', self.docker_container,
                  'mysqldump', '-u', self.db_user, self.db_name),
            env={'MYSQL_PWD': self.db_password},
            stdout_path=artifact_path,
        )]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        return [Command(
            argv=('docker', 'exec', '-i', '-e', 'MYSQL_PWD', self.docker_container,
                  'mysql', '-u', self.db_user, self.db_name),
            env={'MYSQL_PWD': self.db_password},
            stdin_path=artifact_path,
        )]

    def describe(self) -> str:
        return f"MySQL {self.db_name} in container {self.docker_container} (user {self.db_user})"

    def __repr__(self):
        return f'<MysqlDockerTarget {self.db_name} container={self.docker_container}>'


@dataclass(frozen=True)
class MongodbTarget(BackupTarget):
    db_host: str = 'localhost'
    db_port: int = 27017
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None

    type_name = 'mongodb'
    extension = 'gz'

    def _connection_args(self) -> List[str]:
        return ['--host', self.db_host, '--port', str(self.db_port)] + \
            _mongo_auth_args(self.db_user, self.db_password)

    def backup_commands(self, artifact_path: str) -> List[Command]:
        argv = ['mongodump'] + self._connection_args()
        if self.db_name:
            argv += ['--db', self.db_name]
        argv += [f'--archive={artifact_path}', '--gzip']
        return [Command(argv=tuple(argv), secrets=_secrets(self.db_password))]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        argv = ['mongorestore'] + self._connection_args()
        if self.db_name:
            argv += ['--nsInclude', f'{self.db_name}.*']
        argv += ['--drop', f'--archive={artifact_path}', '--gzip']
        return [Command(argv=tuple(argv), secrets=_secrets(self.db_password))]

    def describe(self) -> str:
        scope = self.db_name or 'all databases'
        return f"MongoDB {scope}@{self.db_host}:{self.db_port}"

    def __repr__(self):
        return f'<MongodbTarget {self.db_host}:{self.db_port}>'


@dataclass(frozen=True)
class MongodbDockerTarget(BackupTarget):
    docker_container: str
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None

    type_name = 'mongodb_docker'
    extension = 'gz'

    @staticmethod
    def container_path(artifact_path: str) -> str:
        """Scratch location inside the container for the archive."""
        return f"/tmp/{os.path.basename(artifact_path)}"

    def backup_commands(self, artifact_path: str) -> List[Command]:
        inner_path = self.container_path(artifact_path)

        argv = ['docker', 'exec', self.docker_container, 'mongodump']
        argv += _mongo_auth_args(self.db_user, self.db_password)
        if self.db_name:
            argv += ['--db', self.db_name]
        argv += [f'--archive={inner_path}', '--gzip']

        return [
            Command(argv=tuple(argv), secrets=_secrets(self.db_password)),
            Command(argv=('docker', 'cp', f'{self.docker_container}:{inner_path}', artifact_path)),
        ]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        inner_path = self.container_path(artifact_path)

        argv = ['docker', 'exec', self.docker_container, 'mongorestore']
        argv += _mongo_auth_args(self.db_user, self.db_password)
        if self.db_name:
            argv += ['--nsInclude', f'{self.db_name}.*']
        argv += ['--drop', f'--archive={inner_path}', '--gzip']

        return [
            Command(argv=('docker', 'cp', artifact_path, f'{self.docker_container}:{inner_path}')),
            Command(argv=tuple(argv), secrets=_secrets(self.db_password)),
        ]

    def cleanup_commands(self, artifact_path: str) -> List[Command]:
        # Scratch names are unique per run
        inner_path = self.container_path(artifact_path)
        return [Command(argv=('docker', 'exec', self.docker_container, 'rm', '-f', inner_path))]

    def describe(self) -> str:
        scope = self.db_name or 'all databases'
        return f"MongoDB {scope} in container {self.docker_container}"

    def __repr__(self):
        return f'<MongodbDockerTarget container={self.docker_container}>'


@dataclass(frozen=True)
class FolderTarget(BackupTarget):
    path: str

    type_name = 'folder'
    extension = 'tar.gz'

    def backup_commands(self, artifact_path: str) -> List[Command]:
        return [Command(argv=('tar', '-czf', artifact_path, '-C', self.path, '.'))]

    def restore_commands(self, artifact_path: str) -> List[Command]:
        return [
            Command(argv=('mkdir', '-p', self.path)),
            Command(argv=('tar', '-xzf', artifact_path, '-C', self.path)),
        ]

    def describe(self) -> str:
        return f"folder {self.path}"

    def __repr__(self):
        return f'<FolderTarget {self.path}>'


TARGET_TYPES: Dict[str, Type[BackupTarget]] = {
    cls.type_name: cls
    for cls in (
        PostgresqlTarget,
        PostgresqlDockerTarget,
        MysqlTarget,
        MysqlDockerTarget,
        MongodbTarget,
        MongodbDockerTarget,
        FolderTarget,
    )
}


def create_target(config: Dict[str, Any]) -> BackupTarget:
    """
    Factory function to create the target described by a 'params' mapping.

    Args:
        config: Mapping with a 'type' tag plus the variant's own fields

    Returns:
        BackupTarget instance

    Raises:
        ConfigurationError: If the type tag or any field is invalid
    """
    if not isinstance(config, dict):
        raise ConfigurationError(f"Target configuration must be an object, got {type(config).__name__}")

    options = dict(config)
    target_type = options.pop('type', None)

    if target_type not in TARGET_TYPES:
        raise ConfigurationError(
            f"Invalid target type: {target_type}. "
            f"Valid options: {list(TARGET_TYPES.keys())}"
        )

    return TARGET_TYPES[target_type].from_config(options)


def command_for(target: BackupTarget, title: str, timestamp: datetime, staging_dir: str) -> BackupPlan:
    """
    Build the commands producing an element's artifact.

    Pure: nothing is executed and nothing touches the filesystem.

    Args:
        target: Backup target of the element
        title: Element title (artifact filename prefix)
        timestamp: Moment shared by every command of this backup
        staging_dir: Directory the artifact is written to

    Returns:
        BackupPlan with the ordered commands and the artifact path
    """
    path = build_artifact_path(staging_dir, title, timestamp, target.extension)
    return BackupPlan(
        commands=target.backup_commands(path),
        artifact_path=path,
        cleanup=target.cleanup_commands(path)
    )
