"""User-facing message texts.

Replies are in Spanish, the language of the bot's users. Placeholders use
str.format() names.
"""

GENERAL_ERROR = (
    "❌ Ocurrió un error al procesar tu mensaje. Por favor, intenta de nuevo "
    "o consulta /ayuda."
)
RATE_LIMITED = "🚦 Has alcanzado el límite de solicitudes. Intenta de nuevo en {seconds} segundos."
BUSY = "⏳ Estamos atendiendo a muchos usuarios en este momento. Intenta de nuevo en unos momentos."
SERVICE_UNAVAILABLE = "🔧 El servicio está temporalmente no disponible. Estamos trabajando para solucionarlo."
CIRCUIT_OPEN = "⚡ Servicio en mantenimiento. Por favor, intenta más tarde."
UNAUTHORIZED = "❌ No autorizado"
FEATURE_DISABLED = "🔧 Esta función está desactivada temporalmente por alta demanda. Intenta más tarde."
READ_ONLY = "🔒 El bot está en modo de solo lectura. Tus cambios no pueden guardarse ahora."
WIZARD_EXPIRED = "⏰ La configuración anterior expiró por inactividad y fue cancelada."

UNKNOWN_COMMAND = "❌ No reconozco el comando /{command}"
DID_YOU_MEAN = "Quizás quisiste decir:"
SEE_HELP = "Usa /ayuda para ver todos los comandos disponibles."

NLP_NOT_UNDERSTOOD = (
    "🤔 No entendí tu consulta. Puedes preguntar cosas como "
    "\"¿cuánto está la premium?\" o usar /ayuda."
)
NLP_SUGGESTION = "🤔 ¿Quisiste decir {command}?"
NLP_SUGGESTION_BUTTON = "✅ Sí, {command}"

FALLBACK_CLASSIFIER = (
    "El servicio de consultas inteligentes está temporalmente no disponible. "
    "Usa comandos básicos como /precios."
)
FALLBACK_CLASSIFIER_PRICE = (
    "Las consultas en texto libre no están disponibles temporalmente. "
    "Usa /precios para consultar los precios."
)
FALLBACK_CLASSIFIER_FUEL = "Consulta de gasolina no disponible temporalmente. Intenta más tarde o usa /precios."
FALLBACK_PRICES = "Los precios pueden no estar actualizados debido a problemas técnicos."
FALLBACK_PRICES_CACHED = "Mostrando precios desde caché (pueden no estar actualizados)."
FALLBACK_ANALYTICS = "Los servicios de análisis están en mantenimiento."
FALLBACK_ANALYTICS_TRENDS = "Las tendencias no están disponibles temporalmente."
FALLBACK_ANALYTICS_ANALYSIS = "El análisis está temporalmente no disponible."

FUEL_LABELS = {
    "regular": "Regular",
    "premium": "Premium",
    "diesel": "Diésel",
}
