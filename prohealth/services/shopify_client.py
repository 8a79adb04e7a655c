"""
Shopify Admin API client.
Handles partner metaobjects, customers, discount codes and store credit.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

import httpx

from ..utils.exceptions import ShopifyError

logger = logging.getLogger(__name__)

PARTNER_METAOBJECT_TYPE = 'mm_pro_de_sante'
PARTNER_METAOBJECT_NAME = 'MM Pro de santé'
PARTNER_CUSTOMER_TAG = 'pro_sante'

PENDING_NAMESPACE = 'custom'
PENDING_KEY = 'pro_en_attente_de_validation'
PROFESSION_KEY = 'profession'
ADDRESS_KEY = 'adresse'

PARTNER_FIELD_DEFINITIONS = [
    {'name': 'Identification', 'key': 'identification', 'type': 'single_line_text_field', 'required': True},
    {'name': 'First name', 'key': 'first_name', 'type': 'single_line_text_field', 'required': False},
    {'name': 'Last name', 'key': 'last_name', 'type': 'single_line_text_field', 'required': False},
    {'name': 'Name', 'key': 'name', 'type': 'single_line_text_field', 'required': True},
    {'name': 'Email', 'key': 'email', 'type': 'single_line_text_field', 'required': True},
    {'name': 'Profession', 'key': 'profession', 'type': 'single_line_text_field', 'required': False},
    {'name': 'Adresse', 'key': 'adresse', 'type': 'single_line_text_field', 'required': False},
    {'name': 'Code Name', 'key': 'code', 'type': 'single_line_text_field', 'required': True},
    {'name': 'Montant', 'key': 'montant', 'type': 'number_decimal', 'required': True},
    {
        'name': 'Type', 'key': 'type', 'type': 'single_line_text_field', 'required': True,
        'validations': [{'name': 'choices', 'value': '["%", "€"]'}],
    },
    {'name': 'Discount ID', 'key': 'discount_id', 'type': 'single_line_text_field', 'required': False},
    {'name': 'Customer ID', 'key': 'customer_id', 'type': 'single_line_text_field', 'required': False},
    {'name': 'Status', 'key': 'status', 'type': 'boolean', 'required': False},
    {'name': 'Cache revenue', 'key': 'cache_revenue', 'type': 'number_decimal', 'required': False},
    {'name': 'Cache orders count', 'key': 'cache_orders_count', 'type': 'number_integer', 'required': False},
    {'name': 'Cache credit earned', 'key': 'cache_credit_earned', 'type': 'number_decimal', 'required': False},
]

CUSTOMER_METAFIELD_DEFINITIONS = [
    {'name': 'Pro en attente de validation', 'key': PENDING_KEY, 'type': 'single_line_text_field'},
    {'name': 'Profession', 'key': PROFESSION_KEY, 'type': 'single_line_text_field'},
    {'name': 'Adresse', 'key': ADDRESS_KEY, 'type': 'single_line_text_field'},
]

USER_ERRORS_FRAGMENT = """
                userErrors {
                    field
                    message
                }
"""


def to_customer_gid(customer_id) -> str:
    """Numeric id or GID in, GID out."""
    customer_id = str(customer_id)
    if customer_id.startswith('gid://'):
        return customer_id
    return f'gid://shopify/Customer/{customer_id}'


def gid_to_id(gid: str) -> Optional[str]:
    """Numeric tail of a Shopify GID."""
    if not gid:
        return None
    return str(gid).split('/')[-1]


class ShopifyClient:
    """
    Client for Shopify Admin GraphQL API.

    Supports:
    - Partner metaobjects (definition, CRUD)
    - Customers (search, create, tags, metafields)
    - Basic code discounts
    - Native store credit deposits
    - Orders filtered by discount code
    """

    def __init__(self, shop_or_domain, access_token: str = None, api_version: str = '2025-01'):
        """
        Initialize Shopify client.

        Can be initialized either with:
        - a Shop model instance: credentials read from the row
        - shop_domain + access_token: direct initialization
        """
        if hasattr(shop_or_domain, 'shop_domain'):
            shop = shop_or_domain
            if not shop.shop_domain or not shop.access_token:
                raise ValueError(f"Shop {shop.shop_domain} missing Shopify credentials")
            domain = shop.shop_domain
            access_token = shop.access_token
        else:
            domain = shop_or_domain

        self.shop_domain = domain.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{api_version}/graphql.json'

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """Execute a GraphQL query."""
        headers = {
            'X-Shopify-Access-Token': self.access_token,
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        try:
            with httpx.Client() as client:
                response = client.post(
                    self.graphql_url,
                    headers=headers,
                    json=payload,
                    timeout=30.0
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as e:
            raise ShopifyError(f"Shopify request failed: {e}", original_error=e)

        if result.get('errors'):
            raise ShopifyError(f"GraphQL errors: {result['errors']}")

        return result.get('data') or {}

    def _execute_mutation(self, query: str, variables: Dict, root: str) -> Dict[str, Any]:
        """Execute a mutation and raise on userErrors."""
        result = self._execute_query(query, variables)
        mutation_result = result.get(root) or {}
        user_errors = mutation_result.get('userErrors') or []

        if user_errors:
            raise ShopifyError(f"Shopify errors: {user_errors}", user_errors=user_errors)

        return mutation_result

    # ==================== SHOP ====================

    def get_shop_currency(self) -> str:
        """Shop's base currency code."""
        result = self._execute_query('query { shop { currencyCode } }')
        return (result.get('shop') or {}).get('currencyCode') or 'EUR'

    # ==================== CUSTOMERS ====================

    CUSTOMER_FIELDS = """
                id
                email
                firstName
                lastName
                displayName
                tags
                createdAt
                defaultAddress {
                    address1
                    city
                    zip
                    country
                }
                proMeta: metafield(namespace: "custom", key: "pro_en_attente_de_validation") {
                    id
                    value
                }
                professionMeta: metafield(namespace: "custom", key: "profession") {
                    value
                }
                adresseMeta: metafield(namespace: "custom", key: "adresse") {
                    value
                }
    """

    @staticmethod
    def _parse_customer(node: Dict[str, Any]) -> Dict[str, Any]:
        if not node:
            return None
        return {
            'id': node.get('id'),
            'email': node.get('email'),
            'first_name': node.get('firstName') or '',
            'last_name': node.get('lastName') or '',
            'display_name': node.get('displayName'),
            'tags': node.get('tags') or [],
            'created_at': node.get('createdAt'),
            'default_address': node.get('defaultAddress'),
            'pending_value': (node.get('proMeta') or {}).get('value'),
            'profession': (node.get('professionMeta') or {}).get('value'),
            'address': (node.get('adresseMeta') or {}).get('value'),
        }

    def search_customers_by_email(self, email: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Customers whose email matches exactly (Shopify search syntax)."""
        query = f"""
        query searchCustomers($query: String!, $first: Int!) {{
            customers(first: $first, query: $query) {{
                edges {{
                    node {{
                        {self.CUSTOMER_FIELDS}
                    }}
                }}
            }}
        }}
        """
        result = self._execute_query(query, {'query': f'email:{email}', 'first': limit})
        edges = (result.get('customers') or {}).get('edges', [])
        customers = [self._parse_customer(edge['node']) for edge in edges]
        wanted = email.strip().lower()
        return [c for c in customers if (c.get('email') or '').strip().lower() == wanted]

    def get_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one customer with the partner-program metafields."""
        query = f"""
        query getCustomer($id: ID!) {{
            customer(id: $id) {{
                {self.CUSTOMER_FIELDS}
            }}
        }}
        """
        result = self._execute_query(query, {'id': to_customer_gid(customer_id)})
        return self._parse_customer(result.get('customer'))

    def list_customers_page(self, cursor: str = None, first: int = 250) -> Dict[str, Any]:
        """One page of customers, cursor paginated."""
        query = f"""
        query listCustomers($first: Int!, $cursor: String) {{
            customers(first: $first, after: $cursor) {{
                edges {{
                    node {{
                        {self.CUSTOMER_FIELDS}
                    }}
                }}
                pageInfo {{
                    hasNextPage
                    endCursor
                }}
            }}
        }}
        """
        variables = {'first': first}
        if cursor:
            variables['cursor'] = cursor
        result = self._execute_query(query, variables)
        connection = result.get('customers') or {}
        page_info = connection.get('pageInfo') or {}
        return {
            'customers': [self._parse_customer(edge['node']) for edge in connection.get('edges', [])],
            'has_next_page': bool(page_info.get('hasNextPage')),
            'end_cursor': page_info.get('endCursor'),
        }

    def list_customers_by_tag(self, tag: str = PARTNER_CUSTOMER_TAG, max_pages: int = 20) -> List[Dict[str, Any]]:
        """All customers carrying a tag."""
        query = f"""
        query customersByTag($query: String!, $cursor: String) {{
            customers(first: 250, after: $cursor, query: $query) {{
                edges {{
                    node {{
                        {self.CUSTOMER_FIELDS}
                    }}
                }}
                pageInfo {{
                    hasNextPage
                    endCursor
                }}
            }}
        }}
        """
        customers = []
        cursor = None
        for _ in range(max_pages):
            variables = {'query': f'tag:{tag}'}
            if cursor:
                variables['cursor'] = cursor
            result = self._execute_query(query, variables)
            connection = result.get('customers') or {}
            customers.extend(self._parse_customer(edge['node']) for edge in connection.get('edges', []))
            page_info = connection.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                break
            cursor = page_info.get('endCursor')
        return customers

    def create_customer(
        self,
        email: str,
        first_name: str = None,
        last_name: str = None,
        tags: List[str] = None,
        accepts_marketing: bool = True
    ) -> Dict[str, Any]:
        """
        Create a customer, subscribed to email marketing by default.

        Raises:
            ShopifyError: If customer creation fails
        """
        query = f"""
        mutation customerCreate($input: CustomerInput!) {{
            customerCreate(input: $input) {{
                customer {{
                    id
                    email
                    firstName
                    lastName
                    tags
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """

        input_data = {'email': email}
        if first_name:
            input_data['firstName'] = first_name
        if last_name:
            input_data['lastName'] = last_name
        if tags:
            input_data['tags'] = tags
        if accepts_marketing:
            input_data['emailMarketingConsent'] = {
                'marketingState': 'SUBSCRIBED',
                'marketingOptInLevel': 'SINGLE_OPT_IN',
            }

        mutation_result = self._execute_mutation(query, {'input': input_data}, 'customerCreate')
        customer = mutation_result.get('customer')
        if not customer:
            raise ShopifyError("Customer creation returned no customer data")

        return {
            'success': True,
            'id': customer.get('id'),
            'email': customer.get('email'),
            'first_name': customer.get('firstName'),
            'last_name': customer.get('lastName'),
            'tags': customer.get('tags', []),
        }

    def update_customer(self, customer_id: str, **fields) -> Dict[str, Any]:
        """
        Update basic customer fields.

        Accepts email, first_name, last_name and metafields (list of
        {namespace, key, value, type} dicts).
        """
        query = f"""
        mutation customerUpdate($input: CustomerInput!) {{
            customerUpdate(input: $input) {{
                customer {{
                    id
                    email
                    firstName
                    lastName
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        input_data = {'id': to_customer_gid(customer_id)}
        if fields.get('email') is not None:
            input_data['email'] = fields['email']
        if fields.get('first_name') is not None:
            input_data['firstName'] = fields['first_name']
        if fields.get('last_name') is not None:
            input_data['lastName'] = fields['last_name']
        if fields.get('metafields'):
            input_data['metafields'] = [
                {
                    'namespace': mf.get('namespace', PENDING_NAMESPACE),
                    'key': mf['key'],
                    'value': str(mf['value']),
                    'type': mf.get('type', 'single_line_text_field'),
                }
                for mf in fields['metafields']
            ]

        mutation_result = self._execute_mutation(query, {'input': input_data}, 'customerUpdate')
        return {'success': True, 'customer': mutation_result.get('customer') or {}}

    def set_customer_metafield(self, customer_id: str, key: str, value: str,
                               namespace: str = PENDING_NAMESPACE) -> Dict[str, Any]:
        """Write a single text metafield on a customer."""
        return self.update_customer(
            customer_id,
            metafields=[{'namespace': namespace, 'key': key, 'value': value}]
        )

    def delete_customer_metafield(self, customer_id: str, key: str,
                                  namespace: str = PENDING_NAMESPACE) -> Dict[str, Any]:
        """Remove a customer metafield entirely."""
        query = f"""
        mutation metafieldsDelete($metafields: [MetafieldIdentifierInput!]!) {{
            metafieldsDelete(metafields: $metafields) {{
                deletedMetafields {{
                    key
                    namespace
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {
            'metafields': [{
                'ownerId': to_customer_gid(customer_id),
                'namespace': namespace,
                'key': key,
            }]
        }
        self._execute_mutation(query, variables, 'metafieldsDelete')
        return {'success': True}

    def add_tags(self, resource_id: str, tags: List[str]) -> Dict[str, Any]:
        """Add tags without touching existing ones."""
        query = f"""
        mutation tagsAdd($id: ID!, $tags: [String!]!) {{
            tagsAdd(id: $id, tags: $tags) {{
                node {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        self._execute_mutation(query, {'id': to_customer_gid(resource_id), 'tags': tags}, 'tagsAdd')
        return {'success': True, 'tags': tags}

    def remove_tags(self, resource_id: str, tags: List[str]) -> Dict[str, Any]:
        """Remove tags from a resource."""
        query = f"""
        mutation tagsRemove($id: ID!, $tags: [String!]!) {{
            tagsRemove(id: $id, tags: $tags) {{
                node {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        self._execute_mutation(query, {'id': to_customer_gid(resource_id), 'tags': tags}, 'tagsRemove')
        return {'success': True, 'tags': tags}

    def get_customer_tags_bulk(self, customer_ids: List[str]) -> Dict[str, List[str]]:
        """Map of customer GID to tags, fetched in batches of 250."""
        query = """
        query customerTags($ids: [ID!]!) {
            nodes(ids: $ids) {
                ... on Customer {
                    id
                    tags
                }
            }
        }
        """
        tags = {}
        gids = [to_customer_gid(cid) for cid in customer_ids if cid]
        for start in range(0, len(gids), 250):
            result = self._execute_query(query, {'ids': gids[start:start + 250]})
            for node in result.get('nodes') or []:
                if node and node.get('id'):
                    tags[node['id']] = node.get('tags') or []
        return tags

    def create_customer_metafield_definitions(self) -> List[Dict[str, Any]]:
        """Create the customer metafield definitions used by signups."""
        query = f"""
        mutation metafieldDefinitionCreate($definition: MetafieldDefinitionInput!) {{
            metafieldDefinitionCreate(definition: $definition) {{
                createdDefinition {{
                    id
                    key
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        results = []
        for definition in CUSTOMER_METAFIELD_DEFINITIONS:
            variables = {
                'definition': {
                    'name': definition['name'],
                    'namespace': PENDING_NAMESPACE,
                    'key': definition['key'],
                    'type': definition['type'],
                    'ownerType': 'CUSTOMER',
                }
            }
            result = self._execute_query(query, variables)
            mutation_result = result.get('metafieldDefinitionCreate') or {}
            errors = mutation_result.get('userErrors') or []
            # An existing definition reports TAKEN, which is fine here
            taken = any('taken' in str(e.get('message', '')).lower() or e.get('code') == 'TAKEN' for e in errors)
            if errors and not taken:
                raise ShopifyError(f"Shopify errors: {errors}", user_errors=errors)
            results.append({'key': definition['key'], 'created': not errors})
        return results

    # ==================== DISCOUNTS ====================

    @staticmethod
    def _discount_value(value: float, discount_type: str) -> Dict[str, Any]:
        if discount_type == '%':
            return {'percentage': float(value) / 100}
        return {'discountAmount': {'amount': float(value), 'appliesOnEachItem': False}}

    def create_code_discount(self, title: str, code: str, value: float, discount_type: str = '%') -> Dict[str, Any]:
        """
        Create a basic code discount for all customers and items.

        Args:
            title: Discount title shown in the admin
            code: Code customers enter at checkout
            value: Percentage (20 means 20%) or fixed amount
            discount_type: '%' or '€'
        """
        query = f"""
        mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {{
            discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {{
                codeDiscountNode {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {
            'basicCodeDiscount': {
                'title': title,
                'code': code,
                'startsAt': datetime.utcnow().isoformat() + 'Z',
                'customerSelection': {'all': True},
                'customerGets': {
                    'value': self._discount_value(value, discount_type),
                    'items': {'all': True},
                },
                'appliesOncePerCustomer': False,
            }
        }
        mutation_result = self._execute_mutation(query, variables, 'discountCodeBasicCreate')
        node = mutation_result.get('codeDiscountNode') or {}
        return {'success': True, 'discount_id': node.get('id'), 'code': code}

    def update_code_discount(self, discount_id: str, title: str = None, code: str = None,
                             value: float = None, discount_type: str = None) -> Dict[str, Any]:
        """Update title, code or value of a basic code discount."""
        query = f"""
        mutation discountCodeBasicUpdate($id: ID!, $basicCodeDiscount: DiscountCodeBasicInput!) {{
            discountCodeBasicUpdate(id: $id, basicCodeDiscount: $basicCodeDiscount) {{
                codeDiscountNode {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        discount_input = {}
        if title:
            discount_input['title'] = title
        if code:
            discount_input['code'] = code
        if value is not None and discount_type:
            discount_input['customerGets'] = {
                'value': self._discount_value(value, discount_type),
                'items': {'all': True},
            }
        self._execute_mutation(query, {'id': discount_id, 'basicCodeDiscount': discount_input},
                               'discountCodeBasicUpdate')
        return {'success': True, 'discount_id': discount_id}

    def activate_code_discount(self, discount_id: str) -> Dict[str, Any]:
        query = f"""
        mutation discountCodeActivate($id: ID!) {{
            discountCodeActivate(id: $id) {{
                codeDiscountNode {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        self._execute_mutation(query, {'id': discount_id}, 'discountCodeActivate')
        return {'success': True, 'discount_id': discount_id, 'active': True}

    def deactivate_code_discount(self, discount_id: str) -> Dict[str, Any]:
        query = f"""
        mutation discountCodeDeactivate($id: ID!) {{
            discountCodeDeactivate(id: $id) {{
                codeDiscountNode {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        self._execute_mutation(query, {'id': discount_id}, 'discountCodeDeactivate')
        return {'success': True, 'discount_id': discount_id, 'active': False}

    def delete_code_discount(self, discount_id: str) -> Dict[str, Any]:
        """Delete a code discount by ID."""
        query = f"""
        mutation discountCodeDelete($id: ID!) {{
            discountCodeDelete(id: $id) {{
                deletedCodeDiscountId
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        self._execute_mutation(query, {'id': discount_id}, 'discountCodeDelete')
        return {'success': True, 'deleted_id': discount_id}

    def get_discount_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        """Look up a code discount by its code, None when absent."""
        query = """
        query getDiscountByCode($code: String!) {
            codeDiscountNodeByCode(code: $code) {
                id
                codeDiscount {
                    ... on DiscountCodeBasic {
                        title
                        status
                    }
                }
            }
        }
        """
        result = self._execute_query(query, {'code': code})
        node = result.get('codeDiscountNodeByCode')
        if not node:
            return None
        discount = node.get('codeDiscount') or {}
        return {
            'discount_id': node.get('id'),
            'title': discount.get('title'),
            'status': discount.get('status'),
        }

    # ==================== METAOBJECTS ====================

    def metaobject_definition_exists(self, metaobject_type: str = PARTNER_METAOBJECT_TYPE) -> bool:
        query = """
        query definitionByType($type: String!) {
            metaobjectDefinitionByType(type: $type) {
                id
            }
        }
        """
        result = self._execute_query(query, {'type': metaobject_type})
        return bool(result.get('metaobjectDefinitionByType'))

    def create_metaobject_definition(self) -> Dict[str, Any]:
        """Create the partner metaobject definition."""
        query = f"""
        mutation metaobjectDefinitionCreate($definition: MetaobjectDefinitionCreateInput!) {{
            metaobjectDefinitionCreate(definition: $definition) {{
                metaobjectDefinition {{
                    id
                    type
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {
            'definition': {
                'name': PARTNER_METAOBJECT_NAME,
                'type': PARTNER_METAOBJECT_TYPE,
                'fieldDefinitions': PARTNER_FIELD_DEFINITIONS,
                'capabilities': {'publishable': {'enabled': True}},
            }
        }
        mutation_result = self._execute_mutation(query, variables, 'metaobjectDefinitionCreate')
        definition = mutation_result.get('metaobjectDefinition') or {}
        return {'success': True, 'definition_id': definition.get('id')}

    def delete_metaobject_definition(self, metaobject_type: str = PARTNER_METAOBJECT_TYPE) -> Dict[str, Any]:
        """Delete the definition (Shopify deletes its entries with it)."""
        lookup = """
        query definitionByType($type: String!) {
            metaobjectDefinitionByType(type: $type) {
                id
            }
        }
        """
        result = self._execute_query(lookup, {'type': metaobject_type})
        definition = result.get('metaobjectDefinitionByType')
        if not definition:
            return {'success': True, 'deleted_id': None}

        query = f"""
        mutation metaobjectDefinitionDelete($id: ID!) {{
            metaobjectDefinitionDelete(id: $id) {{
                deletedId
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        mutation_result = self._execute_mutation(query, {'id': definition['id']}, 'metaobjectDefinitionDelete')
        return {'success': True, 'deleted_id': mutation_result.get('deletedId')}

    @staticmethod
    def _parse_metaobject(node: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not node:
            return None
        return {
            'id': node.get('id'),
            'handle': node.get('handle'),
            'updated_at': node.get('updatedAt'),
            'fields': {f['key']: f.get('value') for f in node.get('fields') or []},
        }

    def list_metaobjects(self, metaobject_type: str = PARTNER_METAOBJECT_TYPE,
                         max_pages: int = 20) -> List[Dict[str, Any]]:
        """All entries of a metaobject type."""
        query = """
        query listMetaobjects($type: String!, $cursor: String) {
            metaobjects(first: 250, type: $type, after: $cursor) {
                edges {
                    node {
                        id
                        handle
                        updatedAt
                        fields {
                            key
                            value
                        }
                    }
                }
                pageInfo {
                    hasNextPage
                    endCursor
                }
            }
        }
        """
        entries = []
        cursor = None
        for _ in range(max_pages):
            variables = {'type': metaobject_type}
            if cursor:
                variables['cursor'] = cursor
            result = self._execute_query(query, variables)
            connection = result.get('metaobjects') or {}
            entries.extend(self._parse_metaobject(edge['node']) for edge in connection.get('edges', []))
            page_info = connection.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                break
            cursor = page_info.get('endCursor')
        return entries

    def get_metaobject(self, metaobject_id: str) -> Optional[Dict[str, Any]]:
        query = """
        query getMetaobject($id: ID!) {
            metaobject(id: $id) {
                id
                handle
                updatedAt
                fields {
                    key
                    value
                }
            }
        }
        """
        result = self._execute_query(query, {'id': metaobject_id})
        return self._parse_metaobject(result.get('metaobject'))

    @staticmethod
    def _fields_input(fields: Dict[str, Any]) -> List[Dict[str, str]]:
        items = []
        for key, value in fields.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = 'true' if value else 'false'
            items.append({'key': key, 'value': str(value)})
        return items

    def create_metaobject(self, fields: Dict[str, Any],
                          metaobject_type: str = PARTNER_METAOBJECT_TYPE) -> Dict[str, Any]:
        query = f"""
        mutation metaobjectCreate($metaobject: MetaobjectCreateInput!) {{
            metaobjectCreate(metaobject: $metaobject) {{
                metaobject {{
                    id
                    handle
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {'metaobject': {'type': metaobject_type, 'fields': self._fields_input(fields)}}
        mutation_result = self._execute_mutation(query, variables, 'metaobjectCreate')
        metaobject = mutation_result.get('metaobject') or {}
        return {'success': True, 'id': metaobject.get('id'), 'handle': metaobject.get('handle')}

    def update_metaobject(self, metaobject_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        query = f"""
        mutation metaobjectUpdate($id: ID!, $metaobject: MetaobjectUpdateInput!) {{
            metaobjectUpdate(id: $id, metaobject: $metaobject) {{
                metaobject {{
                    id
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {'id': metaobject_id, 'metaobject': {'fields': self._fields_input(fields)}}
        self._execute_mutation(query, variables, 'metaobjectUpdate')
        return {'success': True, 'id': metaobject_id}

    def delete_metaobject(self, metaobject_id: str) -> Dict[str, Any]:
        query = f"""
        mutation metaobjectDelete($id: ID!) {{
            metaobjectDelete(id: $id) {{
                deletedId
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        self._execute_mutation(query, {'id': metaobject_id}, 'metaobjectDelete')
        return {'success': True, 'deleted_id': metaobject_id}

    # ==================== STORE CREDIT ====================

    def get_store_credit_account_id(self, customer_id: str, currency: str = None) -> Optional[str]:
        """
        Get the store credit account ID for a customer.

        When a currency is given, only an account in that currency counts.

        Returns:
            Store credit account GID or None if no account exists
        """
        query = """
        query getCustomerStoreCreditAccount($customerId: ID!) {
            customer(id: $customerId) {
                id
                storeCreditAccounts(first: 10) {
                    edges {
                        node {
                            id
                            balance {
                                amount
                                currencyCode
                            }
                        }
                    }
                }
            }
        }
        """
        result = self._execute_query(query, {'customerId': to_customer_gid(customer_id)})
        customer = result.get('customer') or {}
        accounts = (customer.get('storeCreditAccounts') or {}).get('edges', [])

        for edge in accounts:
            node = edge['node']
            if not currency or (node.get('balance') or {}).get('currencyCode') == currency:
                return node['id']

        return None

    def credit_store_credit_account(self, customer_id: str, amount, currency: str = 'EUR') -> Dict[str, Any]:
        """
        Deposit store credit for a customer.

        Uses the customer's existing account in the currency, or the
        customer GID so Shopify opens one.

        Returns:
            Dict with transaction details
        """
        account_id = self.get_store_credit_account_id(customer_id, currency)
        target_id = account_id or to_customer_gid(customer_id)

        query = f"""
        mutation storeCreditAccountCredit($id: ID!, $creditInput: StoreCreditAccountCreditInput!) {{
            storeCreditAccountCredit(id: $id, creditInput: $creditInput) {{
                storeCreditAccountTransaction {{
                    id
                    amount {{
                        amount
                        currencyCode
                    }}
                    account {{
                        id
                        balance {{
                            amount
                            currencyCode
                        }}
                    }}
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {
            'id': target_id,
            'creditInput': {
                'creditAmount': {
                    'amount': str(amount),
                    'currencyCode': currency
                }
            }
        }

        mutation_result = self._execute_mutation(query, variables, 'storeCreditAccountCredit')
        transaction = mutation_result.get('storeCreditAccountTransaction') or {}
        account = transaction.get('account') or {}

        return {
            'success': True,
            'transaction_id': transaction.get('id'),
            'amount': float((transaction.get('amount') or {}).get('amount', 0)),
            'currency': (transaction.get('amount') or {}).get('currencyCode'),
            'account_id': account.get('id'),
            'new_balance': float((account.get('balance') or {}).get('amount', 0))
        }

    # ==================== ORDERS ====================

    def list_orders_with_discount_code(self, code: str, since: str = None, until: str = None,
                                       max_pages: int = 10) -> List[Dict[str, Any]]:
        """
        Orders that used a discount code, optionally bounded by creation date.

        Args:
            code: Discount code
            since: ISO date, inclusive lower bound
            until: ISO date, inclusive upper bound
        """
        search = f'discount_code:{code}'
        if since:
            search += f' created_at:>={since}'
        if until:
            search += f' created_at:<={until}'

        query = """
        query ordersByCode($query: String!, $cursor: String) {
            orders(first: 250, after: $cursor, query: $query, sortKey: CREATED_AT, reverse: true) {
                edges {
                    node {
                        id
                        name
                        createdAt
                        email
                        discountCodes
                        subtotalPriceSet {
                            shopMoney {
                                amount
                                currencyCode
                            }
                        }
                        totalDiscountsSet {
                            shopMoney {
                                amount
                            }
                        }
                        totalPriceSet {
                            shopMoney {
                                amount
                            }
                        }
                    }
                }
                pageInfo {
                    hasNextPage
                    endCursor
                }
            }
        }
        """
        orders = []
        cursor = None
        for _ in range(max_pages):
            variables = {'query': search}
            if cursor:
                variables['cursor'] = cursor
            result = self._execute_query(query, variables)
            connection = result.get('orders') or {}
            for edge in connection.get('edges', []):
                node = edge['node']
                subtotal = ((node.get('subtotalPriceSet') or {}).get('shopMoney') or {})
                discounts = ((node.get('totalDiscountsSet') or {}).get('shopMoney') or {})
                total = ((node.get('totalPriceSet') or {}).get('shopMoney') or {})
                orders.append({
                    'id': node.get('id'),
                    'name': node.get('name'),
                    'created_at': node.get('createdAt'),
                    'email': node.get('email'),
                    'discount_codes': node.get('discountCodes') or [],
                    'subtotal': float(subtotal.get('amount', 0)),
                    'total_discounts': float(discounts.get('amount', 0)),
                    'total': float(total.get('amount', 0)),
                    'currency': subtotal.get('currencyCode'),
                })
            page_info = connection.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                break
            cursor = page_info.get('endCursor')
        return orders

    # ==================== WEBHOOKS ====================

    def list_webhook_subscriptions(self) -> List[Dict[str, Any]]:
        query = """
        query {
            webhookSubscriptions(first: 50) {
                edges {
                    node {
                        id
                        topic
                        endpoint {
                            ... on WebhookHttpEndpoint {
                                callbackUrl
                            }
                        }
                    }
                }
            }
        }
        """
        result = self._execute_query(query)
        subscriptions = []
        for edge in (result.get('webhookSubscriptions') or {}).get('edges', []):
            node = edge['node']
            subscriptions.append({
                'id': node.get('id'),
                'topic': node.get('topic'),
                'callback_url': (node.get('endpoint') or {}).get('callbackUrl'),
            })
        return subscriptions

    def create_webhook_subscription(self, topic: str, callback_url: str) -> Dict[str, Any]:
        """Subscribe to a webhook topic, e.g. ORDERS_CREATE."""
        query = f"""
        mutation webhookSubscriptionCreate($topic: WebhookSubscriptionTopic!, $webhookSubscription: WebhookSubscriptionInput!) {{
            webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {{
                webhookSubscription {{
                    id
                    topic
                }}
                {USER_ERRORS_FRAGMENT}
            }}
        }}
        """
        variables = {
            'topic': topic,
            'webhookSubscription': {'callbackUrl': callback_url, 'format': 'JSON'},
        }
        mutation_result = self._execute_mutation(query, variables, 'webhookSubscriptionCreate')
        subscription = mutation_result.get('webhookSubscription') or {}
        return {'success': True, 'id': subscription.get('id'), 'topic': topic}
