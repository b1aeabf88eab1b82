"""
Built-in order templates seeded into an empty database.

The material extrusion entry is deliberately stored in the old sectioned
shape; it is read through the schema normalizer like any legacy template.
"""

BUILTIN_TEMPLATES = [
    {
        "templateName": "Standard Item Sheet",
        "templateType": "grid",
        "fieldsConfig": {
            "gridConfig": {
                "colHeaders": ["No.", "Item", "Specification", "Unit", "Quantity", "Unit Price", "Amount", "Notes"],
                "columns": [
                    {"dataKey": "no", "title": "No.", "type": "text", "width": 60, "readOnly": True},
                    {"dataKey": "itemName", "title": "Item", "type": "text", "width": 150},
                    {"dataKey": "specification", "title": "Specification", "type": "text", "width": 120},
                    {"dataKey": "unit", "title": "Unit", "type": "text", "width": 60},
                    {"dataKey": "quantity", "title": "Quantity", "type": "numeric", "width": 80,
                     "validator": "non_negative", "renderer": "numeric"},
                    {"dataKey": "unitPrice", "title": "Unit Price", "type": "numeric", "width": 100,
                     "validator": "non_negative", "renderer": "currency"},
                    {"dataKey": "amount", "title": "Amount", "type": "numeric", "width": 120,
                     "readOnly": True, "formula": "quantity * unitPrice", "renderer": "currency"},
                    {"dataKey": "notes", "title": "Notes", "type": "text", "width": 100},
                ],
                "rowsCount": 10,
            }
        },
    },
    {
        "templateName": "General Purchase Request",
        "templateType": "general",
        "fieldsConfig": {
            "fields": [
                {
                    "id": "site_manager",
                    "fieldName": "siteManager",
                    "label": "Site Manager",
                    "fieldType": "text",
                    "required": True,
                    "sectionName": "Basic Info",
                    "sortOrder": 0,
                },
                {
                    "id": "delivery_location",
                    "fieldName": "deliveryLocation",
                    "label": "Delivery Location",
                    "fieldType": "textarea",
                    "sectionName": "Basic Info",
                    "sortOrder": 1,
                },
                {
                    "id": "urgency",
                    "fieldName": "urgency",
                    "label": "Urgency",
                    "fieldType": "select",
                    "options": ["Normal", "Urgent"],
                    "sectionName": "Schedule",
                    "sortOrder": 2,
                },
                {
                    "id": "requested_date",
                    "fieldName": "requestedDate",
                    "label": "Requested Date",
                    "fieldType": "date",
                    "sectionName": "Schedule",
                    "sortOrder": 3,
                },
            ]
        },
    },
    {
        "templateName": "Aluminum Extrusion Order",
        "templateType": "material_extrusion",
        "fieldsConfig": {
            "basic_fields": {
                "project_name": "Project Name",
                "order_date": "Order Date",
            },
            "extrusion_list": {
                "profile_code": "Profile Code",
                "length": "Length (mm)",
                "quantity": "Quantity",
                "weight_kg": "Weight (kg)",
            },
            "color_breakdown": {
                "color": "Color",
                "coating": "Coating",
            },
            "delivery_schedule": {
                "delivery_date": "Delivery Date",
            },
        },
    },
]
