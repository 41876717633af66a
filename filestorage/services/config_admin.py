"""
Backend configuration administration.

Create, update and delete BackendConfig rows. Every mutation invalidates
the registry's cached adapters for the affected type, so new credentials
take effect on the next resolution.
"""
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from filestorage.logging_config import setup_logging
from filestorage.models.backend_config import BackendConfig
from filestorage.models.file_record import BackendType
from filestorage.services.registry import BackendRegistry
from filestorage.services.statistics import count_files_on

logger = setup_logging()

# Every field listed must be present
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    BackendType.S3.value: ("key", "secret", "bucket"),
    BackendType.SPACES.value: ("key", "secret", "bucket"),
    BackendType.GCS.value: ("project_id", "bucket"),
    BackendType.AZURE.value: ("container",),
}

# At least one of the alternatives must be fully present
CREDENTIAL_ALTERNATIVES: dict[str, tuple[tuple[str, ...], ...]] = {
    BackendType.GCS.value: (("key_file",), ("credentials",)),
    BackendType.AZURE.value: (("connection_string",), ("account_name", "account_key")),
}


class ConfigInUseError(ValueError):
    def __init__(self, file_count: int):
        self.file_count = file_count
        super().__init__(f"Cannot delete configuration: {file_count} files are using this storage")


def validate_config(storage_type: str, config_data: dict[str, Any]) -> list[str]:
    """
    Check a configuration for the fields its backend type needs.

    Returns:
        List of error messages (empty when valid)
    """
    storage_type = str(storage_type)
    if storage_type == BackendType.LOCAL:
        return ["Local storage is configured through settings, not stored configurations"]
    if storage_type not in REQUIRED_FIELDS:
        return [f"Unsupported storage type: {storage_type}"]

    errors = [
        f"Missing required field '{name}' for {storage_type} storage"
        for name in REQUIRED_FIELDS[storage_type]
        if not config_data.get(name)
    ]

    alternatives = CREDENTIAL_ALTERNATIVES.get(storage_type)
    if alternatives and not any(
        all(config_data.get(name) for name in group) for group in alternatives
    ):
        options = " or ".join("+".join(group) for group in alternatives)
        errors.append(f"{storage_type} storage requires credentials: {options}")

    return errors


def get_config(db: Session, config_id: int) -> BackendConfig:
    """
    Raises:
        ValueError: If no configuration has that id
    """
    config = db.get(BackendConfig, config_id)
    if config is None:
        raise ValueError(f"Configuration not found: {config_id}")
    return config


def list_configs(db: Session, storage_type: str | None = None) -> list[BackendConfig]:
    stmt = select(BackendConfig).order_by(BackendConfig.storage_type, BackendConfig.id)
    if storage_type:
        stmt = stmt.where(BackendConfig.storage_type == storage_type)
    return list(db.scalars(stmt))


def _clear_other_defaults(db: Session, storage_type: str, keep_id: int | None) -> None:
    stmt = (
        update(BackendConfig)
        .where(BackendConfig.storage_type == storage_type, BackendConfig.is_default.is_(True))
        .values(is_default=False)
    )
    if keep_id is not None:
        stmt = stmt.where(BackendConfig.id != keep_id)
    db.execute(stmt)


def create_config(
    db: Session,
    registry: BackendRegistry,
    storage_type: str,
    config_name: str,
    config_data: dict[str, Any],
    is_active: bool = True,
    is_default: bool = False,
    file_type_rules: dict | list | None = None,
) -> BackendConfig:
    """
    Create a named backend configuration.

    Setting is_default clears the flag on every other configuration of the
    same type.

    Raises:
        ValueError: If the configuration is invalid or the name is taken
    """
    storage_type = str(storage_type)
    errors = validate_config(storage_type, config_data)
    if errors:
        raise ValueError("; ".join(errors))

    existing = db.scalars(
        select(BackendConfig).where(
            BackendConfig.storage_type == storage_type,
            BackendConfig.config_name == config_name,
        )
    ).first()
    if existing is not None:
        raise ValueError(f"Configuration '{config_name}' already exists for {storage_type} storage")

    if is_default:
        _clear_other_defaults(db, storage_type, keep_id=None)

    config = BackendConfig(
        storage_type=storage_type,
        config_name=config_name,
        config_data=dict(config_data),
        is_active=is_active,
        is_default=is_default,
        file_type_rules=file_type_rules,
    )
    db.add(config)
    db.commit()
    db.refresh(config)

    registry.invalidate(storage_type)
    logger.info(f"Created {storage_type} storage configuration '{config_name}' (id={config.id})")
    return config


def update_config(
    db: Session,
    registry: BackendRegistry,
    config_id: int,
    config_name: str | None = None,
    config_data: dict[str, Any] | None = None,
    is_active: bool | None = None,
    is_default: bool | None = None,
    file_type_rules: dict | list | None = None,
) -> BackendConfig:
    """
    Update a configuration; only the arguments given are changed.

    Raises:
        ValueError: If the configuration does not exist, the new data is
            invalid, or the new name is taken
    """
    config = get_config(db, config_id)

    if config_data is not None:
        errors = validate_config(config.storage_type, config_data)
        if errors:
            raise ValueError("; ".join(errors))
        config.config_data = dict(config_data)

    if config_name is not None and config_name != config.config_name:
        taken = db.scalars(
            select(BackendConfig.id).where(
                BackendConfig.storage_type == config.storage_type,
                BackendConfig.config_name == config_name,
            )
        ).first()
        if taken is not None:
            raise ValueError(
                f"Configuration '{config_name}' already exists for {config.storage_type} storage"
            )
        old_name = config.config_name
        config.config_name = config_name
        registry.invalidate(config.storage_type, old_name)

    if is_active is not None:
        config.is_active = is_active
    if is_default:
        _clear_other_defaults(db, config.storage_type, keep_id=config.id)
    if is_default is not None:
        config.is_default = is_default
    if file_type_rules is not None:
        config.file_type_rules = file_type_rules

    db.commit()
    db.refresh(config)

    registry.invalidate(config.storage_type)
    logger.info(f"Updated {config.storage_type} storage configuration '{config.config_name}'")
    return config


def delete_config(db: Session, registry: BackendRegistry, config_id: int) -> None:
    """
    Delete a configuration that no file depends on.

    Files naming the configuration count as users; so do files naming no
    configuration when this one is what they resolve to (the default, or
    the only active configuration of its type).

    Raises:
        ValueError: If the configuration does not exist
        ConfigInUseError: If files still use it
    """
    config = get_config(db, config_id)

    active_of_type = db.scalars(
        select(BackendConfig.id).where(
            BackendConfig.storage_type == config.storage_type,
            BackendConfig.is_active.is_(True),
        )
    ).all()
    resolves_unnamed = config.is_default or list(active_of_type) == [config.id]

    file_count = count_files_on(
        db, config.storage_type, config.config_name, include_unnamed=resolves_unnamed
    )
    if file_count > 0:
        raise ConfigInUseError(file_count)

    storage_type, config_name = config.storage_type, config.config_name
    db.delete(config)
    db.commit()

    registry.invalidate(storage_type)
    logger.info(f"Deleted {storage_type} storage configuration '{config_name}'")
