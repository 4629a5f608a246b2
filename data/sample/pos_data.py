"""
Sample POS data.

Completed sales and stock levels used to seed a fresh database (and the
in-memory backend in tests). Prices are in the shop currency.
"""

SALES = [
    {
        "id": "sale-001",
        "invoiceNumber": "INV-001",
        "customer": {"id": "cust-001", "name": "Walk-in Customer", "type": "Retail"},
        "items": [
            {
                "productId": "prod-glove-m",
                "name": "Nitrile Examination Gloves (M)",
                "sku": "GLV-NIT-M",
                "price": 100.00,
                "qty": 5,
                "returnedQuantity": 0,
            },
        ],
        "subtotal": 500.00,
        "discount": 0.0,
        "vatAmount": 0.0,
        "grandTotal": 500.00,
        "saleDate": "2026-10-01T10:15:00+00:00",
    },
    {
        "id": "sale-002",
        "invoiceNumber": "INV-002",
        "customer": {
            "id": "cust-002",
            "name": "City Care Clinic",
            "phone": "01710000002",
            "type": "Wholesale",
        },
        "items": [
            {
                "productId": "prod-syringe-5",
                "name": "Disposable Syringe 5ml (Box of 100)",
                "sku": "SYR-5ML-100",
                "price": 450.00,
                "qty": 4,
                "returnedQuantity": 0,
                "batchNumber": "SY2409",
                "expiryDate": "2028-09-30T00:00:00+00:00",
            },
            {
                "productId": "prod-bp-monitor",
                "name": "Digital Blood Pressure Monitor",
                "sku": "BPM-DIG-01",
                "price": 2500.00,
                "qty": 1,
                "returnedQuantity": 0,
            },
            {
                "productId": "prod-gauze",
                "name": "Sterile Gauze Swabs (Pack of 50)",
                "sku": "GAU-STR-50",
                "price": 120.00,
                "qty": 10,
                "returnedQuantity": 0,
            },
        ],
        "subtotal": 5500.00,
        "discount": 275.00,
        "vatAmount": 261.25,
        "grandTotal": 5486.25,
        "saleDate": "2026-10-05T14:40:00+00:00",
    },
    {
        "id": "sale-003",
        "invoiceNumber": "INV-0031",
        "customer": {"name": "Rahim Uddin", "phone": "01810000003", "type": "Retail"},
        "items": [
            {
                "productId": "prod-thermo",
                "name": "Infrared Thermometer",
                "sku": "THM-IR-01",
                "price": 1800.00,
                "qty": 2,
                "returnedQuantity": 1,
            },
        ],
        "subtotal": 3600.00,
        "discount": 0.0,
        "vatAmount": 180.00,
        "grandTotal": 3780.00,
        "saleDate": "2026-10-09T09:05:00+00:00",
    },
]

STOCK = [
    {"id": "prod-glove-m", "productId": "prod-glove-m", "productName": "Nitrile Examination Gloves (M)", "currentQty": 40, "availableQty": 40},
    {"id": "prod-syringe-5", "productId": "prod-syringe-5", "productName": "Disposable Syringe 5ml (Box of 100)", "currentQty": 25, "availableQty": 25},
    {"id": "prod-bp-monitor", "productId": "prod-bp-monitor", "productName": "Digital Blood Pressure Monitor", "currentQty": 6, "availableQty": 6},
    {"id": "prod-gauze", "productId": "prod-gauze", "productName": "Sterile Gauze Swabs (Pack of 50)", "currentQty": 80, "availableQty": 80},
    {"id": "prod-thermo", "productId": "prod-thermo", "productName": "Infrared Thermometer", "currentQty": 12, "availableQty": 12},
]
