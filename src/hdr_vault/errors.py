# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2025 red1239109-cmd
"""Exception hierarchy shared by every vault component."""


class VaultError(RuntimeError):
    pass


class NotInitializedError(VaultError):
    def __init__(self, component: str):
        super().__init__(f"{component} not initialized")
        self.component = component


class PersistenceError(VaultError):
    pass


class StateNotFoundError(PersistenceError):
    def __init__(self, state_id: str):
        super().__init__(f"State {state_id} not found in index")
        self.state_id = state_id


class UnsupportedFormatError(VaultError):
    def __init__(self, fmt: str, action: str = "export"):
        super().__init__(f"Unsupported {action} format: {fmt}")
        self.format = fmt


class DashboardError(VaultError):
    pass


class SecurityError(VaultError):
    pass


class IntegrityError(SecurityError):
    pass


class CapsuleError(VaultError):
    pass


class AccelerationError(VaultError):
    pass
