"""Reply templates sent back to customers."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from ..models import Order, Product

MENU = (
    "Je peux vous aider à :\n"
    "• Voir le catalogue : tapez « catalogue »\n"
    "• Passer une commande : « je veux commander 2 doliprane »\n"
    "• Suivre une commande : « statut commande 12 »\n"
    "• Demander un devis ou une facture : « devis », « facture »"
)

TECHNICAL_DIFFICULTY = (
    "Désolé, nous rencontrons une difficulté technique. "
    "Merci de réessayer dans quelques instants."
)

ACKNOWLEDGEMENTS = (
    "Avec plaisir ! 😊",
    "Je vous en prie. Autre chose ?",
    "Parfait, je reste à votre disposition.",
)

FAREWELLS = (
    "Au revoir et à bientôt ! 👋",
    "Merci de votre visite, à très vite !",
    "Bonne journée, à bientôt !",
)

STATUS_MESSAGES = {
    "nouvelle": "Votre commande a bien été reçue et sera traitée sous peu.",
    "en cours": "Votre commande est en cours de préparation.",
    "expédiée": "Votre commande a été expédiée, elle arrive bientôt.",
    "livrée": "Votre commande a été livrée. Merci pour votre confiance !",
    "annulée": "Cette commande a été annulée.",
}


def money(amount: Decimal | int | float, currency: str) -> str:
    return f"{Decimal(amount):,.0f}".replace(",", " ") + f" {currency}"


def pick(options: Sequence[str], seed: int) -> str:
    return options[seed % len(options)]


def greeting(tenant_name: str | None, order_count: int, last_order: Order | None) -> str:
    header = f"Bonjour et bienvenue chez {tenant_name} ! 👋" if tenant_name else "Bonjour ! 👋"
    if order_count and last_order is not None:
        history = (
            f"\nVous avez passé {order_count} commande(s). "
            f"Dernière commande #{last_order.id} : {last_order.status}."
        )
    else:
        history = ""
    return f"{header}{history}\n\n{MENU}"


def help_text() -> str:
    return MENU


def catalogue(products: Sequence[Product], currency: str) -> str:
    if not products:
        return "Notre catalogue est vide pour le moment. Revenez bientôt !"
    lines = ["🛒 Nos produits :"]
    for product in products:
        stock = "" if product.stock is None else f" ({product.stock} en stock)"
        lines.append(f"• {product.name} : {money(product.price, currency)}{stock}")
    lines.append("\nPour commander : « je veux commander 2 <produit> »")
    return "\n".join(lines)


def suggestions(query: str | None, products: Sequence[Product], currency: str) -> str:
    intro = (
        f"Je n'ai pas trouvé « {query} » dans notre catalogue."
        if query
        else "Quel produit souhaitez-vous commander ?"
    )
    if not products:
        return intro
    names = "\n".join(f"• {p.name} ({money(p.price, currency)})" for p in products)
    return f"{intro}\nVoici quelques suggestions :\n{names}"


def ask_quantity(product: Product, currency: str) -> str:
    stock = "" if product.stock is None else f" ({product.stock} disponibles)"
    return (
        f"{product.name} à {money(product.price, currency)}{stock}.\n"
        "Combien en voulez-vous ?"
    )


def confirm_order(product: Product, quantity: int, currency: str) -> str:
    total = Decimal(product.price) * quantity
    return (
        f"Récapitulatif : {quantity} x {product.name} = {money(total, currency)}.\n"
        "Confirmez-vous la commande ? (oui / non)"
    )


def order_cancelled() -> str:
    return "Commande annulée. Dites-moi si vous souhaitez autre chose."


def stock_insufficient(product_name: str, available: int, requested: int) -> str:
    if available <= 0:
        return f"Désolé, {product_name} est en rupture de stock."
    return (
        f"Stock insuffisant pour {product_name}. "
        f"Disponible : {available}. Demandé : {requested}.\n"
        "Indiquez une quantité plus petite."
    )


def order_created(order: Order, quantity: int, product_name: str, currency: str) -> str:
    return (
        f"✅ Commande #{order.id} enregistrée !\n"
        f"{quantity} x {product_name}\n"
        f"Total : {money(order.total, currency)}\n\n"
        f"Pour la suivre : « statut commande {order.id} »"
    )


def order_status(order: Order, currency: str) -> str:
    explanation = STATUS_MESSAGES.get(order.status, "")
    return (
        f"📦 Commande #{order.id}\n"
        f"Statut : {order.status}\n"
        f"Date : {order.created_at:%d/%m/%Y}\n"
        f"Total : {money(order.total, currency)}\n\n"
        f"{explanation}"
    ).rstrip()


def order_not_found(order_id: int) -> str:
    return (
        f"Je ne trouve pas de commande #{order_id} à votre nom. "
        "Vérifiez le numéro ou tapez « statut » pour votre dernière commande."
    )


def no_orders() -> str:
    return "Vous n'avez pas de commandes récentes."


def quote_requested(order: Order | None) -> str:
    if order is not None:
        return (
            f"📝 Votre demande de devis pour la commande #{order.id} est enregistrée. "
            "Vous le recevrez très prochainement."
        )
    return (
        "📝 Votre demande de devis est enregistrée. "
        "Un conseiller vous l'enverra très prochainement."
    )


def invoice_requested(order: Order) -> str:
    return (
        f"🧾 La facture de la commande #{order.id} est en préparation. "
        "Vous la recevrez très prochainement."
    )


def no_invoice_available() -> str:
    return "Aucune commande livrée ou expédiée ne peut être facturée pour le moment."


def guess(hint: str) -> str:
    return f"Je n'ai pas bien compris. {hint}\n\n{MENU}"


def fallback() -> str:
    return f"Je n'ai pas bien compris votre message. 🤔\n\n{MENU}"
