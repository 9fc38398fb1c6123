"""
Default catalog inserted on first boot.

Seed rows carry fixed ids so every backend can insert them with
"ignore if it already exists" semantics.
"""

DEFAULT_SERVICES = [
    {
        "id": "ind-1",
        "name": "Basic Personal Website",
        "description": "A simple personal website with a clean, easy to use design",
        "price": 299,
        "original_price": 500,
        "category": "individuals",
        "subcategory": "personal-websites",
        "features": ["Responsive design", "5 core pages", "1 month support", "Easy updates"],
        "is_active": True,
        "is_featured": True,
    },
    {
        "id": "ind-2",
        "name": "Professional Personal App",
        "description": "A professional personal web app with advanced features and a modern design",
        "price": 599,
        "original_price": 900,
        "category": "individuals",
        "subcategory": "personal-apps",
        "features": ["Full web app", "Personal dashboard", "Portfolio gallery", "3 months support"],
        "is_active": True,
        "is_featured": False,
    },
    {
        "id": "rest-1",
        "name": "Restaurant Menu With Payments",
        "description": "A professional digital menu for restaurants including ordering and payments",
        "price": 300,
        "original_price": 1230,
        "category": "restaurants",
        "subcategory": "menu",
        "features": ["Digital menu", "Ordering system", "Online payments", "Product management"],
        "is_active": True,
        "is_featured": True,
    },
    {
        "id": "comp-1",
        "name": "Corporate Website",
        "description": "A complete company website with a modern, professional design",
        "price": 899,
        "original_price": 1500,
        "category": "companies",
        "subcategory": "corporate",
        "features": ["Custom design", "10 pages", "SEO optimised", "6 months support"],
        "is_active": True,
        "is_featured": True,
    },
    {
        "id": "comp-2",
        "name": "E-commerce Store",
        "description": "A full online store with payments and shipping",
        "price": 1299,
        "original_price": 2000,
        "category": "companies",
        "subcategory": "ecommerce",
        "features": ["Multiple payment methods", "Inventory management", "Shipment tracking", "Sales reports"],
        "is_active": True,
        "is_featured": True,
    },
]

DEFAULT_DISCOUNT_CODES = [
    {"id": "dc-1", "code": "WELCOME10", "discount_percentage": 10, "is_active": True, "expires_at": None},
    {"id": "dc-2", "code": "MA3K20", "discount_percentage": 20, "is_active": True, "expires_at": None},
    {"id": "dc-3", "code": "SPECIAL25", "discount_percentage": 25, "is_active": True, "expires_at": None},
]

DEFAULT_COURSES = [
    {
        "id": "course-python",
        "name": "Python Fundamentals",
        "language": "python",
        "description": "Learn programming in Python from scratch",
        "price": 0,
        "is_free": True,
        "is_active": True,
    },
    {
        "id": "course-java",
        "name": "Java Programming",
        "language": "java",
        "description": "Java programming for beginners",
        "price": 0,
        "is_free": True,
        "is_active": True,
    },
    {
        "id": "course-frontend",
        "name": "Front-End Development",
        "language": "frontend",
        "description": "HTML, CSS, JavaScript and React",
        "price": 0,
        "is_free": True,
        "is_active": True,
    },
    {
        "id": "course-backend",
        "name": "Back-End Development",
        "language": "backend",
        "description": "Node.js, Express and databases",
        "price": 0,
        "is_free": True,
        "is_active": True,
    },
]
