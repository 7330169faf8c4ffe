"""Chat texts sent by the Navigapp bot (Markdown parse mode)."""

OPEN_APP_BUTTON = "🚀 Open app"
HELP_BUTTON = "❓ Help"
PRICING_BUTTON = "💎 Pricing"

PRICING_SECTION = """*Plans:*
• *Free*: 1 page, up to 8 cards
• *Pro*: unlimited pages and cards plus extended analytics"""

WELCOME = f"""🚀 *Welcome to Navigapp!*

Build navigation pages for your Telegram channels and groups.

*What Navigapp does:*
• 📄 Interactive navigation pages
• 🔗 Direct links to your pages
• 📊 View and click analytics
• 🎨 Cards with icons

{PRICING_SECTION}

Tap the button below to get started 👇"""

RETURNING_USER = """👋 Welcome back, {name}!

*Plan:* {plan}

Tap the button below to open your app:"""

NEW_USER = """👋 Hi! Looks like this is your first time using Navigapp.

Tap the button below to create your first navigation page:"""

HELP = """❓ *Navigapp help*

*Commands:*
• /start - Get started
• /login - Sign in to the app
• /help - Show this help

*How it works:*
1. Send /start or /login
2. The web app opens
3. Create your first navigation page
4. Share its link in a channel or group

""" + PRICING_SECTION

UNKNOWN_COMMAND = """🤖 I don't understand that command.

*Available commands:*
• /start - Get started
• /login - Sign in to the app
• /help - Help

Or tap the button below to open the app:"""

AUTH_COMPLETED = "✅ Sign-in complete! You can now create navigation pages."

PAGE_CREATED = '🎉 Your page "{title}" is live!\n\n🔗 Direct link: {url}'

AUTH_FAILED = "❌ Sign-in failed. Please use /start again to get a fresh link."

COMMAND_FAILED = "❌ Something went wrong. Please try again with /{command}"
