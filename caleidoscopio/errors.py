from __future__ import annotations


class CaleidoscopioError(Exception):
    """Erro de domínio com status HTTP associado."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class DadosInvalidos(CaleidoscopioError):
    status_code = 400


class NaoAutenticado(CaleidoscopioError):
    status_code = 401


class PermissaoNegada(CaleidoscopioError):
    status_code = 403


class NaoEncontrado(CaleidoscopioError):
    status_code = 404


class Conflito(CaleidoscopioError):
    status_code = 409


class ManagerError(CaleidoscopioError):
    """Falha na comunicação com o Sistema 1 (Manager) ou resposta de erro dele."""

    status_code = 500
