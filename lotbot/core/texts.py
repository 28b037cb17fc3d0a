# lotbot/core/texts.py
"""Operator-facing bot texts (Portuguese, like the rest of the product)."""
from __future__ import annotations

from lotbot.core.domain import Destination, Lot

HELP_TEXTS = {
    "unrecognized": (
        "Comando não reconhecido.\n\n"
        "Comandos disponíveis:\n"
        "/live <link> - aplica o link ao último lote pendente da Live Gratuita\n"
        "/despertos <link> - aplica o link ao último lote pendente do Despertos\n"
        "/link <lote> <link> - aplica o link a um lote específico\n"
        "/undo latest <live|despertos> - desfaz o último lote aplicado\n"
        "Enviar apenas o link aplica ao último lote pendente da Live Gratuita."
    ),
    "bad_link": "Link inválido. Envie um link do YouTube, ex.: /live https://youtu.be/XXXXXXXXXXX",
    "link_usage": "Uso: /link <lote> <link do YouTube>, ex.: /link L261018-1432-K7QX https://youtu.be/XXXXXXXXXXX",
    "undo_destination": (
        "Informe qual destino desfazer: /undo latest live ou /undo latest despertos"
    ),
}


def help_text(reason: str) -> str:
    return HELP_TEXTS.get(reason, HELP_TEXTS["unrecognized"])


def no_pending_lot(destination: Destination) -> str:
    return f"Nenhum lote pendente para {destination.label}."


def no_applied_lot(destination: Destination) -> str:
    return f"Nenhum lote aplicado para {destination.label}."


def lot_not_found(lot_code: str) -> str:
    return f"Lote {lot_code} não encontrado."


def invalid_transition(lot_code: str, current: str) -> str:
    return f"Lote {lot_code} não pode ser alterado: status atual {current}."


def applied_confirmation(lot: Lot) -> str:
    return (
        f"✅ Lote {lot.lot_code} aplicado ({lot.destination.label}).\n"
        f"{len(lot.items)} pergunta(s) atualizada(s) com o link:\n"
        f"{lot.external_resource_url}"
    )


def reverted_confirmation(lot: Lot) -> str:
    return (
        f"↩️ Lote {lot.lot_code} desfeito ({lot.destination.label}).\n"
        f"{len(lot.items)} pergunta(s) restaurada(s)."
    )


def applied_notice(lot: Lot, actor: str) -> str:
    return (
        f"Lote {lot.lot_code} ({lot.destination.label}) aplicado por {actor}.\n"
        f"{lot.external_resource_url}"
    )


def reverted_notice(lot: Lot, actor: str) -> str:
    return f"Lote {lot.lot_code} ({lot.destination.label}) desfeito por {actor}."
