from stepup.config import settings

MESSAGES: dict[str, dict[str, str]] = {
    "pt": {
        "not_found": "Verificação não encontrada ou já utilizada",
        "expired": "Código de verificação expirado",
        "locked": "Conta bloqueada temporariamente. Tente novamente em {minutes} minutos.",
        "invalid_code": "Código incorreto. {remaining} tentativas restantes.",
        "setup_required": "Authenticator app não configurado",
        "delivery_failure": "Erro ao enviar código de verificação",
        "timeout": "Tempo esgotado ao enviar código",
        "code_sent": "Código de verificação enviado para {destination}",
    },
    "en": {
        "not_found": "Verification not found or already used",
        "expired": "Verification code expired",
        "locked": "Account temporarily locked. Try again in {minutes} minutes.",
        "invalid_code": "Incorrect code. {remaining} attempts remaining.",
        "setup_required": "Authenticator app is not set up",
        "delivery_failure": "Could not send the verification code",
        "timeout": "Timed out sending the verification code",
        "code_sent": "Verification code sent to {destination}",
    },
}


def translate(key: str, locale: str | None = None, **params: object) -> str:
    catalog = MESSAGES.get(locale or settings.locale) or MESSAGES["en"]
    template = catalog.get(key) or MESSAGES["en"][key]
    return template.format(**params)


def mask_destination(destination: str) -> str:
    if len(destination) < 4:
        return "****"
    return "****" + destination[-4:]
