"""
Customer- and session-facing message catalog.

Everything a customer can see on a failure path comes from here, in the
tenant's configured language. No billing detail, error code or internal
identifier ever appears in these strings.
"""

DEFAULT_LANGUAGE = "en"

MESSAGES = {
    "en": {
        "unavailable": "Our team is currently unavailable. Please try again later or contact us directly.",
        "failure": "Sorry, something went wrong on our side. Please try again in a moment.",
        "fallback": "Thanks for your message. Could you tell me a bit more about what you need?",
        "pending_approval": "I've passed your request for \"{tool}\" to our team for confirmation.",
        "action_blocked": "The action \"{tool}\" could not be taken: it is not permitted for this assistant.",
        "approval_executed": "Approved action \"{tool}\" was carried out. Result: {result}",
        "approval_failed": "Approved action \"{tool}\" could not be completed.",
        "approval_skipped": "Approved action \"{tool}\" was not carried out.",
        "approval_rejected": "Action \"{tool}\" was not taken: a team member declined it.",
        "approval_rejected_reason": "Action \"{tool}\" was not taken: a team member declined it ({reason}).",
        "approval_expired": "Action \"{tool}\" not taken: approval window elapsed.",
        "tool_disabled": "The action \"{tool}\" has been paused for this conversation after repeated failures.",
    },
    "de": {
        "unavailable": "Unser Team ist derzeit nicht erreichbar. Bitte versuchen Sie es später erneut oder kontaktieren Sie uns direkt.",
        "failure": "Entschuldigung, bei uns ist etwas schiefgelaufen. Bitte versuchen Sie es gleich noch einmal.",
        "fallback": "Danke für Ihre Nachricht. Können Sie mir etwas mehr darüber erzählen, was Sie brauchen?",
        "pending_approval": "Ich habe Ihre Anfrage \"{tool}\" zur Bestätigung an unser Team weitergegeben.",
    },
    "es": {
        "unavailable": "Nuestro equipo no está disponible en este momento. Inténtelo más tarde o contáctenos directamente.",
        "failure": "Lo sentimos, algo salió mal. Inténtelo de nuevo en un momento.",
        "fallback": "Gracias por su mensaje. ¿Podría contarme un poco más sobre lo que necesita?",
        "pending_approval": "He enviado su solicitud \"{tool}\" a nuestro equipo para su confirmación.",
    },
    "fr": {
        "unavailable": "Notre équipe est actuellement indisponible. Veuillez réessayer plus tard ou nous contacter directement.",
        "failure": "Désolé, un problème est survenu de notre côté. Veuillez réessayer dans un instant.",
        "fallback": "Merci pour votre message. Pouvez-vous m'en dire un peu plus sur votre besoin ?",
        "pending_approval": "J'ai transmis votre demande \"{tool}\" à notre équipe pour confirmation.",
    },
    "hi": {
        "unavailable": "हमारी टीम अभी उपलब्ध नहीं है। कृपया बाद में पुनः प्रयास करें या सीधे हमसे संपर्क करें।",
        "failure": "क्षमा करें, हमारी ओर से कुछ गड़बड़ हो गई। कृपया थोड़ी देर में पुनः प्रयास करें।",
        "fallback": "आपके संदेश के लिए धन्यवाद। क्या आप बता सकते हैं कि आपको क्या चाहिए?",
        "pending_approval": "मैंने आपका अनुरोध \"{tool}\" पुष्टि के लिए हमारी टीम को भेज दिया है।",
    },
}


def localized(key: str, language: str | None = None, **params) -> str:
    """Look up a message in the tenant's language, falling back to English per key."""
    lang = (language or DEFAULT_LANGUAGE).split("-")[0].lower()
    catalog = MESSAGES.get(lang, {})
    template = catalog.get(key) or MESSAGES[DEFAULT_LANGUAGE][key]
    return template.format(**params) if params else template
